# split_summary.py
from utils import money

RULE = "━" * 12
NAME_WIDTH = 18
LINE_WIDTH = NAME_WIDTH + 2 + 1 + 8
FENCE = "```"


def _amount(x) -> str:
    return f"${money(x):.2f}"


def _padded(x) -> str:
    return f"${money(x):8.2f}"


def _line(label: str, x) -> str:
    return f"{label[:NAME_WIDTH]:<{NAME_WIDTH}}  {_padded(x)}"


def _grand_total_lines(totals) -> list:
    if totals.tip_percentage > 0:
        return [
            f"\U0001F4B0 *Total:   {_padded(totals.grand_subtotal)}*",
            f"\U0001F4B0 *Con {totals.tip_percentage:.0f}% de propina: {_padded(totals.grand_total)}*",
        ]
    return [f"\U0001F4B0 *Total:   {_padded(totals.grand_total)}*"]


def _compact(split, totals) -> str:
    lines = ["\U0001F9FE *Division de Cuenta*", RULE]
    for person in split.people:
        t = totals.per_person[person.id]
        if totals.tip_percentage > 0:
            lines.append(f"\U0001F464 *{person.name}*: {_amount(t.subtotal)} + {_amount(t.tip)} propina = *{_amount(t.total)}*")
        else:
            lines.append(f"\U0001F464 *{person.name}*: *{_amount(t.total)}*")
    lines.append(RULE)
    lines.extend(_grand_total_lines(totals))
    return "\n".join(lines)


def _detailed(split, totals) -> str:
    lines = ["\U0001F9FE *Division de Cuenta*", RULE, ""]
    tip_label = f"Propina ({totals.tip_percentage:.0f}%):"

    for person in split.people:
        t = totals.per_person[person.id]
        lines.append(f"\U0001F464 *{person.name}*")
        lines.append(FENCE)
        rows = split.rows_for(person.id)
        if rows:
            lines.extend(_line(row.name, row.price) for row in rows)
        else:
            lines.append("(sin articulos)")
        lines.append("-" * LINE_WIDTH)
        lines.append(_line("Consumo:", t.subtotal))
        if totals.tip_percentage > 0:
            lines.append(_line(tip_label, t.tip))
        lines.append(_line("Total:", t.total))
        lines.append(FENCE)
        lines.append("")

    lines.append(RULE)
    if money(totals.unassigned_subtotal) > 0:
        lines.append(f"⚪ Sin asignar: {_amount(totals.unassigned_subtotal)}")
    lines.extend(_grand_total_lines(totals))
    return "\n".join(lines)


def format_summary(split, tip_percentage=None, detailed: bool = False) -> str:
    """
    Render a split as text to paste into a chat.

    The compact form is one line per person plus the grand total. The detailed
    form lists every item under its owner in a monospace block with a
    subtotal / tip / total footer. Unassigned items never get tip and are not
    part of the grand total.
    """
    totals = split.compute_totals(tip_percentage)
    if detailed:
        return _detailed(split, totals)
    return _compact(split, totals)
