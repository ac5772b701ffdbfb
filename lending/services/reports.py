import io
from datetime import datetime, timezone
from typing import Iterable, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.worksheet.table import Table, TableStyleInfo
from sqlmodel import Session

from lending.schemas import BorrowingRead, BorrowingStatus, Statistics
from lending.services.ledger import BorrowingLedger

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

HEADERS = [
    "Code", "Item code", "Item", "Borrower", "Contact", "Purpose",
    "Staff", "Qty", "Loan at", "Return at", "Status",
]
COL_WIDTHS = {
    "A": 16, "B": 14, "C": 22, "D": 20, "E": 16, "F": 28,
    "G": 18, "H": 6, "I": 20, "J": 20, "K": 11,
}


def statistics(session: Session) -> Statistics:
    return BorrowingLedger(session).statistics()


def list_borrowings(
    session: Session,
    status: Optional[BorrowingStatus] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> tuple[list[BorrowingRead], int]:
    ledger = BorrowingLedger(session)
    return ledger.list(status=status, limit=limit, offset=offset), ledger.count(status)


def _naive(v: Optional[datetime]) -> Optional[datetime]:
    # openpyxl 不收带时区的 datetime
    if v is None:
        return None
    return v.astimezone(timezone.utc).replace(tzinfo=None) if v.tzinfo else v


def borrowings_xlsx(rows: Iterable[BorrowingRead], title: str = "Borrowings") -> bytes:
    rows = list(rows)

    wb = Workbook()
    ws = wb.active
    ws.title = title

    ws.append(HEADERS)
    ws.row_dimensions[1].height = 26
    for col in range(1, len(HEADERS) + 1):
        cell = ws.cell(row=1, column=col)
        cell.font = Font(bold=True)
        cell.fill = PatternFill("solid", fgColor="DDDDDD")
        cell.alignment = Alignment(horizontal="center", vertical="center")

    for b in rows:
        ws.append([
            b.code,
            b.item_code or "",
            b.item_name or "(deleted)",
            b.borrower_name,
            b.contact or "",
            b.purpose,
            b.staff,
            b.quantity,
            _naive(b.loan_at),
            _naive(b.return_at),
            b.status.value,
        ])

    last_row = 1 + len(rows)
    ws.freeze_panes = "A2"
    for r in range(2, last_row + 1):
        ws.cell(row=r, column=8).number_format = "0"
        ws.cell(row=r, column=9).number_format = "yyyy-mm-dd hh:mm:ss"
        ws.cell(row=r, column=10).number_format = "yyyy-mm-dd hh:mm:ss"

    for k, w in COL_WIDTHS.items():
        ws.column_dimensions[k].width = w

    # 没数据时 Table 至少要有两行，否则 Excel 打开会报错
    if rows:
        table = Table(displayName="BorrowingLedger", ref=f"A1:K{last_row}")
        table.tableStyleInfo = TableStyleInfo(
            name="TableStyleMedium9",
            showFirstColumn=False,
            showLastColumn=False,
            showRowStripes=True,
            showColumnStripes=False,
        )
        ws.add_table(table)

    ws.append([])
    ws.append(["Exported at", datetime.now().strftime("%Y-%m-%d %H:%M:%S")])

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
