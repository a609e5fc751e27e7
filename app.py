# app.py
from flask import Flask, request, jsonify

import config
from ai_parser import parse_receipt_image
from errors import ImageDecodeError
from models import ReceiptItem
from split_calc import SplitCheck
from split_summary import format_summary
from utils import get_logger

log = get_logger("app")

app = Flask(__name__)

ALLOWED_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}

BUSY_MESSAGE = "Service is busy. Please wait about a minute and try again."
UNPARSED_MESSAGE = "Could not parse receipt. Please try again with a clearer image."

SAMPLE_ITEMS = [
    ReceiptItem("Pumpkin Hot Cakes", 1, 159.00, False),
    ReceiptItem("Latte (2)", 1, 130.00, False),
    ReceiptItem("Leche Deslactosada", 1, 10.00, True),
    ReceiptItem("Leche Coco", 1, 10.00, True),
    ReceiptItem("Esencia Vainilla (2.0x)", 1, 20.00, True),
    ReceiptItem("Machaca", 1, 169.00, False),
    ReceiptItem("Bebida 39.90", 1, 39.90, False),
    ReceiptItem("Leche Coco", 1, 10.00, True),
    ReceiptItem("Esencia Vainilla", 1, 10.00, True),
]


@app.route('/health')
def health():
    return 'ok'


@app.route('/demo')
def demo():
    return jsonify({'items': [item.to_dict() for item in SAMPLE_ITEMS],
                    'receipt_total': None, 'restaurant_name': None})


@app.route('/process', methods=['POST'])
def process():
    # expects multipart form-data with a 'receipt_image' (or 'image') file
    f = request.files.get('receipt_image') or request.files.get('image')
    if f is None:
        return jsonify({'error': 'image missing'}), 400

    content_type = (f.mimetype or 'image/jpeg').lower()
    if content_type not in ALLOWED_TYPES:
        return jsonify({'error': f'unsupported image type {content_type}'}), 400

    try:
        result = parse_receipt_image(f.read(), content_type)
    except ImageDecodeError as e:
        log.warning(f"Upload is not a readable image: {e}")
        return jsonify({'error': 'Could not read image.', 'status': 'unreadable'}), 400

    if result.rate_limited:
        return jsonify({'error': BUSY_MESSAGE, 'status': result.status}), 429
    if not result.items:
        return jsonify({'error': UNPARSED_MESSAGE, 'status': result.status}), 422
    return jsonify(dict(result.to_dict(), status=result.status))


@app.route('/summary', methods=['POST'])
def summary():
    # expects JSON {"items": [...], "state": {...}, "tip_percentage": 10, "detailed": false}
    body = request.get_json(silent=True) or {}
    raw_items = body.get('items')
    if not isinstance(raw_items, list):
        return jsonify({'error': 'items missing'}), 400

    items = [ReceiptItem.from_dict(raw) for raw in raw_items if isinstance(raw, dict)]
    split = SplitCheck(items)
    if body.get('state') is not None:
        split.deserialize(body['state'])

    tip = body.get('tip_percentage')
    detailed = body.get('detailed') is True
    totals = split.compute_totals(tip)
    return jsonify({
        'totals': totals.to_dict(),
        'text': format_summary(split, tip, detailed=detailed),
        'state': split.serialize().to_dict(),
    })


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=config.FLASK_PORT)
