"""
Exceptions raised while turning a receipt photo into line items.

Only ImageDecodeError reaches callers of the extraction pipeline; the others
are raised inside a provider adapter and converted to an empty or
rate-limited ExtractionResult at its boundary.
"""


class ReceiptSplitterError(Exception):
    """Base class for receipt splitter errors"""


class ImageDecodeError(ReceiptSplitterError):
    """The uploaded bytes are not an image we can read"""


class TransportError(ReceiptSplitterError):
    """Network failure or timeout talking to a provider"""


class ProviderError(ReceiptSplitterError):
    """The provider answered with an error that is not rate limiting"""


class RateLimitError(ReceiptSplitterError):
    """The provider refused the request because of throughput limits or quota"""


class MalformedResponseError(ReceiptSplitterError):
    """The provider's payload could not be decoded as JSON"""
