# test_split_summary.py
from models import ReceiptItem
from split_calc import SplitCheck
from split_summary import format_summary

ITEMS = [
    ReceiptItem("Latte", 1, 130.00, False),
    ReceiptItem("Leche Deslactosada", 1, 10.00, True),
    ReceiptItem("Chilaquiles Verdes con Pollo", 1, 165.50, False),
    ReceiptItem("Agua", 1, 25.00, False),
]


def make_split():
    split = SplitCheck(ITEMS, ["Yo", "Ana"])
    split.toggle_row("0")
    split.assign_item("2", 2)
    return split


def test_compact_with_tip():
    text = format_summary(make_split(), 10)
    assert text == "\n".join([
        "🧾 *Division de Cuenta*",
        "━━━━━━━━━━━━",
        "👤 *Yo*: $140.00 + $14.00 propina = *$154.00*",
        "👤 *Ana*: $165.50 + $16.55 propina = *$182.05*",
        "━━━━━━━━━━━━",
        "💰 *Total:   $  305.50*",
        "💰 *Con 10% de propina: $  336.05*",
    ])


def test_compact_without_tip():
    text = format_summary(make_split(), 0)
    assert text.splitlines()[2] == "👤 *Yo*: *$140.00*"
    assert text.splitlines()[-1] == "💰 *Total:   $  305.50*"
    assert "propina" not in text


def test_detailed_layout():
    text = format_summary(make_split(), 10, detailed=True)
    assert text == "\n".join([
        "🧾 *Division de Cuenta*",
        "━━━━━━━━━━━━",
        "",
        "👤 *Yo*",
        "```",
        "Latte               $  130.00",
        "Leche Deslactosada  $   10.00",
        "-----------------------------",
        "Consumo:            $  140.00",
        "Propina (10%):      $   14.00",
        "Total:              $  154.00",
        "```",
        "",
        "👤 *Ana*",
        "```",
        "Chilaquiles Verdes  $  165.50",
        "-----------------------------",
        "Consumo:            $  165.50",
        "Propina (10%):      $   16.55",
        "Total:              $  182.05",
        "```",
        "",
        "━━━━━━━━━━━━",
        "⚪ Sin asignar: $25.00",
        "💰 *Total:   $  305.50*",
        "💰 *Con 10% de propina: $  336.05*",
    ])


def test_detailed_person_without_items():
    split = SplitCheck(ITEMS, ["Yo", "Ana"])
    text = format_summary(split, 0, detailed=True)
    assert "(sin articulos)" in text
    assert "Propina" not in text


def test_divided_parts_are_listed_under_owners():
    split = SplitCheck(ITEMS, ["Yo", "Ana"])
    split.divide_equally("3")
    text = format_summary(split, 0, detailed=True)
    assert "Agua (1/2)          $   12.50" in text
    assert "Agua (2/2)          $   12.50" in text


def test_uses_stored_tip_by_default():
    split = make_split()
    split.set_tip_percentage(10)
    assert format_summary(split) == format_summary(split, 10)
    assert format_summary(split) == format_summary(split)


def test_grand_total_is_padded():
    split = SplitCheck([ReceiptItem("Banquete", 1, 1234.50, False)], ["Yo"])
    split.toggle_row("0")
    assert format_summary(split, 0).splitlines()[-1] == "💰 *Total:   $ 1234.50*"
