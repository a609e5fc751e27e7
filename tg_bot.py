# tg_bot.py
import os

from telegram import Update, ReplyKeyboardMarkup, KeyboardButton, InlineKeyboardMarkup, InlineKeyboardButton
from telegram.error import BadRequest
from telegram.ext import (
    ApplicationBuilder, ConversationHandler, MessageHandler, CallbackQueryHandler, filters, ContextTypes
)

import config
from ai_parser import parse_receipt_image
from errors import ImageDecodeError
from split_calc import SplitCheck
from split_store import SplitStateStore
from split_summary import format_summary
from utils import get_logger

log = get_logger("tg_bot")

SESSION_KEY = "current"

# --- Conversation States ---
WAIT_RECEIPT, ASK_NAMES, ITEM_SELECTION = range(3)

TIP_PRESETS = (0, 10, 15, 20)
PEOPLE_PER_ROW = 3

WELCOME = "👋 Welcome to the Receipt Splitter bot!\n📸 Please send a clear photo of the receipt to start."
BUSY = "⏳ The service is busy. Please wait about a minute and send the photo again."
UNPARSED = "😕 Could not read any items. Please try again with a clearer photo."
UNREADABLE = "😕 That photo could not be opened. Please send it again."
ASSIGN_HELP = "Pick a person, then tap the items they had. ➗ shares an item between everyone."


# --- Keyboards ---
def main_menu_keyboard():
    return ReplyKeyboardMarkup(
        [[KeyboardButton("🚀 Start Receipt Splitter"), KeyboardButton("🔄 Restart")]],
        resize_keyboard=True,
        one_time_keyboard=True
    )


def build_split_keyboard(split: SplitCheck) -> InlineKeyboardMarkup:
    totals = split.compute_totals()
    buttons = []

    people = []
    for person in split.people:
        marker = "▶ " if person.id == split.selected_person_id else ""
        subtotal = totals.per_person[person.id].subtotal
        people.append(InlineKeyboardButton(f"{marker}{person.name} (${subtotal:.0f})", callback_data=f"person|{person.id}"))
    for i in range(0, len(people), PEOPLE_PER_ROW):
        buttons.append(people[i:i + PEOPLE_PER_ROW])

    for row in split.rows:
        if row.is_header:
            buttons.append([InlineKeyboardButton(f"↩ {row.name} (${row.original_price:.2f})", callback_data=f"undivide|{row.id}")])
            continue
        owner = split.get_person(row.assigned_to)
        prefix = f"[{owner.name}] " if owner else ""
        indent = "  ↳ " if row.is_modifier or row.is_part else ""
        line = [InlineKeyboardButton(f"{indent}{prefix}{row.name} ${row.price:.2f}", callback_data=f"row|{row.id}")]
        if not row.is_part:
            line.append(InlineKeyboardButton("➗", callback_data=f"divide|{row.id}"))
        buttons.append(line)

    buttons.append([
        InlineKeyboardButton(f"{'✓ ' if totals.tip_percentage == tip else ''}{tip}%", callback_data=f"tip|{tip}")
        for tip in TIP_PRESETS
    ])

    last = []
    if totals.unassigned_subtotal > 0:
        last.append(InlineKeyboardButton(f"➕ Rest (${totals.unassigned_subtotal:.0f})", callback_data="remainder"))
    last.append(InlineKeyboardButton("✅ Done", callback_data="done"))
    buttons.append(last)
    return InlineKeyboardMarkup(buttons)


def apply_callback(split: SplitCheck, data: str) -> bool:
    """Apply one button press to the split. Returns True when the user is done."""
    if data == "done":
        return True
    if data == "remainder":
        split.assign_remainder_to_new_person()
        return False

    action, _, arg = data.partition("|")
    if action == "person":
        split.select_person(int(arg))
    elif action == "row":
        split.toggle_row(arg)
    elif action == "divide":
        split.divide_equally(arg)
    elif action == "undivide":
        split.undivide(arg)
    elif action == "tip":
        split.set_tip_percentage(arg)
    else:
        log.warning(f"Unknown callback data: {data}")
    return False


# --- Saved sessions ---
def chat_store(chat_id) -> SplitStateStore:
    """Each chat keeps its own snapshots, so clearing one never touches another."""
    return SplitStateStore(os.path.join(config.SPLIT_STATE_DIR, f"chat_{chat_id}"))


def restore_split(chat_id):
    store = chat_store(chat_id)
    items = store.load_items(SESSION_KEY)
    if not items:
        return None
    return SplitCheck.load(items, store, SESSION_KEY)


# --- Handlers ---
async def handle_receipt_start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.message.reply_text(WELCOME, reply_markup=main_menu_keyboard())
    return WAIT_RECEIPT


async def handle_restart(update: Update, context: ContextTypes.DEFAULT_TYPE):
    context.user_data.clear()
    context.chat_data.clear()
    chat_store(update.effective_chat.id).clear()
    await update.message.reply_text(WELCOME, reply_markup=main_menu_keyboard())
    return WAIT_RECEIPT


async def handle_receipt(update: Update, context: ContextTypes.DEFAULT_TYPE):
    photo = await update.message.photo[-1].get_file()
    image_bytes = bytes(await photo.download_as_bytearray())
    await update.message.reply_text("Reading your receipt...")

    try:
        result = parse_receipt_image(image_bytes, "image/jpeg")
    except ImageDecodeError as e:
        log.warning(f"Unreadable photo: {e}")
        await update.message.reply_text(UNREADABLE)
        return WAIT_RECEIPT

    if result.rate_limited:
        await update.message.reply_text(BUSY)
        return WAIT_RECEIPT
    if not result.items:
        await update.message.reply_text(UNPARSED)
        return WAIT_RECEIPT

    # a new receipt replaces whatever split this chat had going
    store = chat_store(update.effective_chat.id)
    store.clear()
    store.save_items(SESSION_KEY, result.items)
    context.chat_data.pop("split", None)
    context.chat_data["items"] = result.items
    title = f"*{result.restaurant_name}*: " if result.restaurant_name else ""
    total = f" (receipt total ${result.receipt_total:.2f})" if result.receipt_total is not None else ""
    await update.message.reply_text(
        f"{title}found {len(result.items)} items{total}.\n"
        "Please list the names of everyone present, separated by *spaces*.\n(Example: Alice Bob Charlie)",
        parse_mode="Markdown"
    )
    return ASK_NAMES


async def handle_names(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if update.message.text.strip() == "🔄 Restart":
        return await handle_restart(update, context)

    names = [n.strip() for n in update.message.text.split() if n.strip()]
    if not names:
        await update.message.reply_text("Please send at least one name.")
        return ASK_NAMES

    store = chat_store(update.effective_chat.id)
    items = context.chat_data.get("items") or store.load_items(SESSION_KEY)
    if not items:
        await update.message.reply_text(WELCOME, reply_markup=main_menu_keyboard())
        return WAIT_RECEIPT

    split = SplitCheck.load(items, store, SESSION_KEY, names)
    context.chat_data["split"] = split
    await update.message.reply_text(ASSIGN_HELP, reply_markup=build_split_keyboard(split))
    return ITEM_SELECTION


async def handle_selection(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    split = context.chat_data.get("split")
    if split is None:
        split = restore_split(update.effective_chat.id)
        if split is None:
            await query.message.reply_text(WELCOME, reply_markup=main_menu_keyboard())
            return WAIT_RECEIPT
        context.chat_data["split"] = split

    if apply_callback(split, query.data):
        await query.message.reply_text(format_summary(split, detailed=True), parse_mode="Markdown")
        return ConversationHandler.END

    try:
        await query.edit_message_reply_markup(reply_markup=build_split_keyboard(split))
    except BadRequest as e:
        # Telegram rejects edits that leave the keyboard unchanged
        log.debug(f"Keyboard not updated: {e}")
    return ITEM_SELECTION


# --- Main entry ---
def main():
    application = ApplicationBuilder().token(config.TELEGRAM_TOKEN).build()

    restart = MessageHandler(filters.TEXT & filters.Regex("^🔄 Restart$"), handle_restart)
    conv = ConversationHandler(
        entry_points=[
            MessageHandler(filters.TEXT & filters.Regex("^🚀 Start Receipt Splitter$"), handle_receipt_start),
            restart,
        ],
        states={
            WAIT_RECEIPT: [MessageHandler(filters.PHOTO, handle_receipt), restart],
            ASK_NAMES: [MessageHandler(filters.TEXT & ~filters.COMMAND, handle_names)],
            ITEM_SELECTION: [CallbackQueryHandler(handle_selection), restart],
        },
        fallbacks=[],
    )

    application.add_handler(conv)
    log.info("Bot started (polling)...")
    application.run_polling()


if __name__ == "__main__":
    main()
