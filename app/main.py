"""
Streamlit Frontend for Cashbook

The daily ledger: two work sheets (AE, AE-QT), the dashboard with the
USDT rate and the conversion / withdraw sheets, the expense book and
the reports.

DESIGN PRINCIPLES:
1. Sheets look and behave like a spreadsheet
2. Every cell edit goes through the same cascade as typed input
3. Rejected input is shown, never silently dropped
4. Clear messages in Vietnamese
5. No hidden actions: sync and exports are explicit buttons

Grids are pandas frames in `st.data_editor`; the edited frame is diffed
against the sheet and each changed cell is applied with `edit_cell`.
"""

import asyncio
from datetime import date

import pandas as pd
import streamlit as st

from cashbook.config import validate_all_settings
from cashbook.export import ExportError
from cashbook.formatting import format_usdt, format_vnd
from cashbook.formulas import DEFAULT_FORMULAS, FormulaError
from cashbook.models.sheet import EXPENSE_CATEGORIES, Currency, SheetKind
from cashbook.orchestrator import Cashbook, create_app_components
from cashbook.services.rates import usdt_value
from cashbook.services.staff import StaffError
from cashbook.sheets import CellEditError, EntryKind, EntryNotFound, EntryRejected
from cashbook.stats import balance_counts, filter_and_sort


# Page configuration
st.set_page_config(
    page_title="Cashbook",
    page_icon="📒",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .big-number {
        font-size: 2em;
        font-weight: bold;
        color: #2c3e50;
    }
    .rate-box {
        padding: 16px;
        background-color: #ecfdf5;
        border-radius: 10px;
        border-left: 5px solid #059669;
        margin: 10px 0;
    }
</style>
""", unsafe_allow_html=True)


COLUMN_LABELS = {
    "date": "Ngày",
    "money": "Tiền",
    "name": "Tên",
    "chia": "Chia",
    "khoa": "Khóa",
    "note": "Ghi chú",
    "tt": "TT",
    "usdt": "USDT",
    "usd": "USD",
    "price": "Giá",
    "vnd": "VND",
    "staff": "Nhân viên",
    "bankdep": "Bank đẹp",
    "bankbad": "Bank xấu",
    "visa": "Visa",
}


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components():
    """Get or create application components (cached)."""
    try:
        cashbook, _ = create_app_components()
    except Exception as e:
        st.error(f"Không khởi tạo được đồng bộ đám mây: {e}")
        cashbook, _ = create_app_components(use_cloud=False)
    report = run_async(cashbook.initial_sync())
    if report is not None and report.updated:
        st.toast(f"☁️ Đã tải {len(report.updated)} mục từ đám mây")
    return cashbook


def main():
    """Main application entry point."""
    cashbook = get_components()

    st.sidebar.title("📒 Cashbook")
    st.sidebar.markdown("---")

    pages = {
        "💼 AE": lambda: render_work_page(cashbook, SheetKind.AE),
        "🌐 AE-QT": lambda: render_work_page(cashbook, SheetKind.AE_QT),
        "📊 Dashboard": lambda: render_dashboard_page(cashbook),
        "💰 Thu Chi": lambda: render_expense_page(cashbook),
        "📈 Thống kê": lambda: render_stats_page(cashbook),
        "⚖️ Công nợ": lambda: render_balance_page(cashbook),
        "👥 Nhân viên": lambda: render_staff_page(cashbook),
        "⚙️ Cài đặt": lambda: render_settings_page(cashbook),
    }
    page = st.sidebar.radio("Trang:", list(pages), index=0)
    st.sidebar.markdown("---")
    st.sidebar.caption(f"Hôm nay: {date.today().strftime('%d/%m/%Y')}")

    pages[page]()


# =============================================================================
# Grid helpers
# =============================================================================

def sheet_frame(sheet) -> pd.DataFrame:
    columns = list(sheet.rows[0].COLUMNS) if sheet.rows else []
    return pd.DataFrame(sheet.to_storage(), columns=columns)


def day_view_frame(sheet) -> pd.DataFrame:
    """Rows sorted by date, with a separator row between days."""
    columns = list(sheet.rows[0].COLUMNS) if sheet.rows else []
    records = []
    for group in sheet.day_groups():
        if records:
            records.append({"#": "", **{col: "───" for col in columns}})
        records.extend({"#": str(index + 1), **row} for index, row in group)
    return pd.DataFrame(records, columns=["#"] + columns)


def apply_grid_edits(cashbook: Cashbook, kind: SheetKind, before: pd.DataFrame, after: pd.DataFrame) -> bool:
    """Push every changed cell through the sheet's cascade. True when anything changed."""
    changed = False
    for row_index in range(min(len(before), len(after))):
        for column in before.columns:
            old = str(before.at[row_index, column] or "")
            new = after.at[row_index, column]
            new = "" if pd.isna(new) else str(new)
            if old == new:
                continue
            try:
                run_async(cashbook.edit_cell(kind, row_index, column, new))
                changed = True
            except CellEditError as e:
                st.error(f"❌ Dòng {row_index + 1}, {COLUMN_LABELS.get(column, column)}: {e.message}")
    return changed


def render_sheet_editor(cashbook: Cashbook, kind: SheetKind, read_only=()):
    sheet = run_async(cashbook.sheet(kind))
    frame = sheet_frame(sheet)
    edited = st.data_editor(
        frame,
        key=f"editor_{kind.value}",
        use_container_width=True,
        num_rows="fixed",
        disabled=list(read_only),
        column_config={col: st.column_config.TextColumn(COLUMN_LABELS.get(col, col)) for col in frame.columns},
    )
    if apply_grid_edits(cashbook, kind, frame, edited):
        st.rerun()
    with st.expander("📅 Xem theo ngày"):
        view = day_view_frame(sheet)
        if view.empty:
            st.caption("Chưa có dữ liệu")
        else:
            st.dataframe(view, use_container_width=True, hide_index=True)
    return sheet


def render_export_buttons(cashbook: Cashbook, kind, filename: str):
    cols = st.columns(3)
    mimes = {
        "csv": "text/csv",
        "json": "application/json",
        "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    }
    for col, fmt in zip(cols, ("csv", "json", "xlsx")):
        with col:
            try:
                data = run_async(cashbook.export_sheet(kind, fmt))
            except ExportError as e:
                st.caption(e)
                continue
            st.download_button(
                f"📥 Tải {fmt.upper()}",
                data=data,
                file_name=f"{filename}.{fmt}",
                mime=mimes[fmt],
                key=f"export_{filename}_{fmt}",
            )


# =============================================================================
# Pages
# =============================================================================

def render_work_page(cashbook: Cashbook, kind: SheetKind):
    """AE / AE-QT sheet."""
    st.title(f"{'💼' if kind is SheetKind.AE else '🌐'} Bảng {kind.label}")
    prefs = run_async(cashbook.preferences())

    sheet = render_sheet_editor(cashbook, kind, read_only=("tt",))

    col1, col2, col3 = st.columns(3)
    col1.metric("Tổng tiền", format_vnd(sheet.total(), prefs))
    col2.metric("Số dòng có tiền", sheet.filled_rows())
    col3.caption(f"Công thức TT: {cashbook.engine.describe(kind, 'tt')}")

    with st.expander("📝 Ghi chú dòng"):
        row_number = st.number_input("Dòng", min_value=1, max_value=len(sheet), value=1, key=f"note_row_{kind.value}")
        current = run_async(cashbook.notes.get(kind.value, int(row_number) - 1)) or ""
        text = st.text_area("Ghi chú", value=current, max_chars=1000, key=f"note_text_{kind.value}")
        if st.button("💾 Lưu ghi chú", key=f"note_save_{kind.value}"):
            run_async(cashbook.notes.save(kind.value, int(row_number) - 1, text))
            st.success("Đã lưu ghi chú" if text.strip() else "Đã xóa ghi chú")

    with st.expander("👥 Gợi ý tên"):
        typed = st.text_input("Nhập tên", key=f"suggest_{kind.value}")
        if typed:
            suggestions = run_async(cashbook.staff[kind].suggest(typed))
            st.write(", ".join(suggestions) or "Không có gợi ý")

    render_export_buttons(cashbook, kind, kind.storage_key)


def render_dashboard_page(cashbook: Cashbook):
    st.title("📊 Dashboard")
    prefs = run_async(cashbook.preferences())

    cols = st.columns(3)
    for col, card in zip(cols, run_async(cashbook.cards())):
        value = format_vnd(card.total, prefs)
        col.metric(card.title, value, None if card.is_rate else f"{card.count} dòng")

    st.markdown("### 💱 Tỷ giá USDT/VND")
    if st.button("🔄 Cập nhật tỷ giá") or cashbook.quote is None:
        quote = run_async(cashbook.refresh_rate())
        if quote is None:
            st.warning("⚠️ Không lấy được tỷ giá từ bất kỳ nguồn nào")
    quote = cashbook.quote
    if quote is not None:
        st.markdown(
            f'<div class="rate-box">Giá bán: <b>{format_vnd(quote.sell_price, prefs)}</b> · '
            f'Giá mua: <b>{format_vnd(quote.buy_price, prefs)}</b> · Nguồn: {quote.source.value}</div>',
            unsafe_allow_html=True,
        )
        amount = st.number_input("Số USDT", min_value=0.0, value=0.0, step=100.0)
        at_sell, at_buy = usdt_value(quote, amount)
        c1, c2 = st.columns(2)
        c1.metric("Theo giá bán", format_vnd(at_sell, prefs))
        c2.metric("Theo giá mua", format_vnd(at_buy, prefs))

    st.markdown("### Ngày đổi")
    render_sheet_editor(cashbook, SheetKind.CONVERSION)
    render_export_buttons(cashbook, SheetKind.CONVERSION, SheetKind.CONVERSION.storage_key)

    st.markdown("### Ngày lấy")
    render_sheet_editor(cashbook, SheetKind.WITHDRAW)
    render_export_buttons(cashbook, SheetKind.WITHDRAW, SheetKind.WITHDRAW.storage_key)

    st.markdown("### Bảng tổng")
    totals = run_async(cashbook.dashboard_totals())
    t1, t2, t3, t4 = st.columns(4)
    t1.metric("Tổng USDT", format_usdt(totals.total_usdt, prefs))
    t2.metric("Tổng USD", format_usdt(totals.total_usd, prefs))
    t3.metric("Tổng VND đổi", format_vnd(totals.total_conversion_vnd, prefs))
    t4.metric("Giá TB tháng", format_vnd(totals.month_avg_price, prefs))
    w1, w2, w3, w4 = st.columns(4)
    w1.metric("Bank đẹp", format_vnd(totals.total_bankdep, prefs))
    w2.metric("Bank xấu", format_vnd(totals.total_bankbad, prefs))
    w3.metric("Visa", format_vnd(totals.total_visa, prefs))
    w4.metric("Tổng lấy", format_vnd(totals.total_withdraw, prefs))


def render_expense_page(cashbook: Cashbook):
    st.title("💰 Thu Chi")
    prefs = run_async(cashbook.preferences())
    book = run_async(cashbook.expense_book())
    book.month = st.selectbox("Tháng", book.months(), index=0)

    summary = book.summary()
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Tổng thu", format_vnd(summary.total_income, prefs))
    c2.metric("Tổng chi", format_vnd(summary.total_expense, prefs))
    c3.metric("Còn lại", format_vnd(summary.balance, prefs))
    c4.metric("Tỷ lệ chi", f"{summary.expense_ratio}%")

    tab_income, tab_expense = st.tabs(["Thu", "Chi"])
    for tab, kind in ((tab_income, EntryKind.INCOME), (tab_expense, EntryKind.EXPENSE)):
        with tab:
            with st.form(f"add_{kind.value}", clear_on_submit=True):
                entry_date = st.date_input("Ngày", value=date.today())
                amount = st.number_input("Số tiền", min_value=0.0, step=1000.0)
                currency = st.selectbox("Loại tiền", [c.value for c in Currency])
                if kind is EntryKind.INCOME:
                    label = st.text_input("Nguồn thu", max_chars=100)
                else:
                    label = st.selectbox("Danh mục", EXPENSE_CATEGORIES)
                description = st.text_input("Mô tả")
                if st.form_submit_button("➕ Thêm"):
                    fields = {
                        "date": entry_date.isoformat(),
                        "amount": amount,
                        "currency": currency,
                        "description": description,
                        ("source" if kind is EntryKind.INCOME else "category"): label,
                    }
                    try:
                        run_async(cashbook.add_entry(book, kind, **fields))
                        st.success("✅ Đã thêm")
                    except EntryRejected as e:
                        st.error(f"❌ {e.message}")

            query = st.text_input("Tìm kiếm", key=f"search_{kind.value}")
            entries = book.filter(kind, query=query)
            if not entries:
                st.info("Chưa có dữ liệu")
                continue
            st.dataframe(
                pd.DataFrame([e.model_dump(mode="json") for e in entries]).drop(columns=["id"]),
                use_container_width=True,
            )
            to_delete = st.selectbox(
                "Xóa mục",
                [None] + [e.id for e in entries],
                format_func=lambda x: "—" if x is None else x,
                key=f"delete_{kind.value}",
            )
            if to_delete and st.button("🗑️ Xóa", key=f"delete_btn_{kind.value}"):
                try:
                    run_async(cashbook.delete_entry(book, kind, to_delete))
                    st.rerun()
                except EntryNotFound:
                    st.error("Không tìm thấy mục cần xóa")

    if summary.categories:
        st.markdown("### Chi theo danh mục")
        st.bar_chart(pd.DataFrame(
            {"Số tiền": [c.amount for c in summary.categories]},
            index=[c.category for c in summary.categories],
        ))


def render_stats_page(cashbook: Cashbook):
    st.title("📈 Thống kê theo tháng")
    prefs = run_async(cashbook.preferences())
    stats = run_async(cashbook.monthly())
    if not stats:
        st.info("Chưa có dữ liệu")
        return

    st.dataframe(pd.DataFrame([
        {
            "Tháng": s.label,
            "USDT": format_usdt(s.usdt, prefs),
            "USD": format_usdt(s.usd, prefs),
            "VND đổi": format_vnd(s.vnd_conversion, prefs),
            "Giá TB": format_vnd(s.avg_price, prefs),
            "VND lấy": format_vnd(s.vnd_withdraw, prefs),
            "AE": format_vnd(s.ae_total, prefs),
            "AE-QT": format_vnd(s.aeqt_total, prefs),
            "Tổng": format_vnd(s.total_sum, prefs),
        }
        for s in stats
    ]), use_container_width=True)


def render_balance_page(cashbook: Cashbook):
    st.title("⚖️ Công nợ nhân viên")
    prefs = run_async(cashbook.preferences())
    people = list(run_async(cashbook.balances()).values())

    counts = balance_counts(people)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Tổng", counts["total"])
    c2.metric("Còn nợ NV", counts["positive"])
    c3.metric("NV nợ", counts["negative"])
    c4.metric("Cân bằng", counts["zero"])

    f1, f2, f3 = st.columns(3)
    search = f1.text_input("Tìm tên")
    status = f2.selectbox("Trạng thái", ["all", "positive", "negative", "zero"])
    sort_by = f3.selectbox("Sắp xếp", ["name-asc", "name-desc", "balance-desc", "balance-asc"])

    for person in filter_and_sort(people, search, status, sort_by):
        with st.expander(f"{person.name}: {format_vnd(person.balance, prefs)} ({person.status.label})"):
            a, b, c, d = st.columns(4)
            a.metric("Nhận AE", format_vnd(person.received_ae, prefs))
            b.metric("Nhận AE-QT", format_vnd(person.received_aeqt, prefs))
            c.metric("Đã đổi", format_vnd(person.total_doi, prefs))
            d.metric("Đã lấy", format_vnd(person.total_lay, prefs))
            for title, rows in (
                ("AE", person.ae_transactions),
                ("AE-QT", person.aeqt_transactions),
                ("Đổi", person.doi_transactions),
                ("Lấy", person.lay_transactions),
            ):
                if rows:
                    st.caption(title)
                    st.dataframe(pd.DataFrame([r.model_dump() for r in rows]), use_container_width=True)


def render_staff_page(cashbook: Cashbook):
    st.title("👥 Nhân viên")
    for kind in (SheetKind.AE, SheetKind.AE_QT):
        directory = cashbook.staff[kind]
        st.markdown(f"### Bảng {kind.label}")
        with st.form(f"staff_add_{kind.value}", clear_on_submit=True):
            name = st.text_input("Tên nhân viên")
            if st.form_submit_button("➕ Thêm"):
                try:
                    run_async(directory.add(name))
                    st.success(f"✅ Đã thêm: {name.strip()}")
                except StaffError as e:
                    st.error(str(e))

        names = run_async(directory.names(ascending=True))
        st.caption(f"{len(names)} nhân viên")
        for staff_name in names:
            c1, c2, c3 = st.columns([3, 2, 1])
            c1.write(f"👤 {staff_name}")
            new_name = c2.text_input("Tên mới", key=f"rename_{kind.value}_{staff_name}", label_visibility="collapsed")
            if c3.button("✏️", key=f"rename_btn_{kind.value}_{staff_name}") and new_name:
                try:
                    run_async(directory.rename(staff_name, new_name))
                    st.rerun()
                except StaffError as e:
                    st.error(str(e))
            if c3.button("🗑️", key=f"delete_{kind.value}_{staff_name}"):
                run_async(directory.delete(staff_name))
                st.rerun()


def render_settings_page(cashbook: Cashbook):
    """Render the settings page."""
    st.title("⚙️ Cài đặt")

    st.markdown("### Công thức")
    custom = run_async(cashbook.formulas())
    edited: dict[str, dict[str, str]] = {}
    for table, columns in DEFAULT_FORMULAS.items():
        for column, default in columns.items():
            current = custom.get(table, {}).get(column, default)
            value = st.text_input(f"{table}.{column}", value=current, key=f"formula_{table}_{column}")
            if value != default:
                edited.setdefault(table, {})[column] = value
    if st.button("💾 Lưu công thức"):
        try:
            run_async(cashbook.save_formulas(edited))
            st.success("✅ Đã lưu công thức và tính lại bảng")
        except FormulaError as e:
            st.error(f"❌ {e.message}")

    st.markdown("### Hiển thị")
    prefs = run_async(cashbook.preferences())
    rounding = st.selectbox("Làm tròn", ["round", "floor", "ceil"], index=["round", "floor", "ceil"].index(prefs.display.rounding))
    show_zero = st.checkbox("Hiện số 0", value=prefs.display.show_zero)
    usd_rate = st.number_input("Tỷ giá USD (Thu Chi)", min_value=1.0, value=float(run_async(cashbook.expense_book()).usd_rate))
    if st.button("💾 Lưu cài đặt"):
        prefs.display.rounding = rounding
        prefs.display.show_zero = show_zero
        run_async(cashbook.save_preferences(prefs))
        run_async(cashbook.save_usd_rate(usd_rate))
        st.success("✅ Đã lưu")

    st.markdown("### Sao lưu")
    try:
        st.download_button(
            "📥 Tải bản sao lưu",
            data=run_async(cashbook.export_backup()),
            file_name="management_data_backup.json",
            mime="application/json",
        )
    except ExportError as e:
        st.caption(str(e))
    uploaded = st.file_uploader("Khôi phục từ file", type=["json"])
    if uploaded is not None and st.button("♻️ Khôi phục"):
        try:
            restored = run_async(cashbook.restore_backup(uploaded.getvalue()))
            st.success(f"✅ Đã khôi phục: {', '.join(restored)}")
        except ExportError as e:
            st.error(f"❌ {e}")

    st.markdown("### Đồng bộ đám mây")
    pull_col, sync_col = st.columns(2)
    if pull_col.button("☁️ Kéo dữ liệu từ đám mây"):
        report = run_async(cashbook.pull_from_cloud())
        if report is None:
            st.info("Đồng bộ đám mây chưa bật")
        else:
            st.success(f"Cập nhật: {len(report.updated)} · Bỏ qua: {len(report.skipped)} · Lỗi: {len(report.failed)}")
    if sync_col.button("🔁 Đồng bộ tất cả"):
        result = run_async(cashbook.sync_all())
        if result is None:
            st.info("Đồng bộ đám mây chưa bật")
        else:
            pushed, pulled = result
            st.success(f"Đã đẩy: {len(pushed.updated)} · Đã kéo: {len(pulled.updated)} · Lỗi: {len(pushed.failed) + len(pulled.failed)}")

    st.markdown("### Kết nối")
    status = validate_all_settings()
    services = [
        ("Google Sheets (Đồng bộ)", "google_sheets"),
        ("Rate proxy", "rate_proxy"),
        ("Cảnh báo tỷ giá", "rate_alert"),
        ("Ứng dụng", "app"),
    ]
    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name}")
        else:
            error = status.get(f"{key}_error", "Chưa cấu hình")
            st.error(f"❌ {name} - {error}")


if __name__ == "__main__":
    main()
