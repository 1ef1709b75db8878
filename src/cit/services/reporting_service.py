from __future__ import annotations

from dataclasses import dataclass, field

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from cit.domain.errors import ValidationError
from cit.domain.models import BUCKETS, SIZES, User

KIND_LABELS = {
    "in": "Stock in",
    "out": "Stock out",
    "to_sample": "To sample",
    "sale": "Sale",
}


def _empty_sizes() -> dict[str, int]:
    return {s: 0 for s in SIZES}


@dataclass
class ModelStats:
    color: str
    total: int = 0
    by_size: dict[str, int] = field(default_factory=_empty_sizes)


@dataclass
class TeamStats:
    team: str
    total: int = 0
    by_size: dict[str, int] = field(default_factory=_empty_sizes)
    by_color: dict[str, int] = field(default_factory=dict)
    models: dict[str, ModelStats] = field(default_factory=dict)


class ReportingService:
    def __init__(self, repo, auth_service=None):
        self.repo = repo
        self.auth = auth_service

    def team_stats(self, mode: str = "available") -> list[TeamStats]:
        """Aggregate one bucket per team, size and model.

        Every catalog team and color is listed even when nothing is stocked.
        """
        if mode not in BUCKETS:
            raise ValidationError(f"Mode must be one of {', '.join(BUCKETS)}.")

        stats: dict[str, TeamStats] = {}
        for v in self.repo.list_variants():
            team = stats.setdefault(v.team, TeamStats(team=v.team))
            team.by_color.setdefault(v.color, 0)
            team.models.setdefault(v.color, ModelStats(color=v.color))

        for entry in self.repo.list_balances():
            team = stats.setdefault(entry.team, TeamStats(team=entry.team))
            count = entry.bucket(mode)
            team.total += count
            if entry.size in team.by_size:
                team.by_size[entry.size] += count
            if entry.color:
                team.by_color[entry.color] = team.by_color.get(entry.color, 0) + count
                model = team.models.setdefault(entry.color, ModelStats(color=entry.color))
                model.total += count
                if entry.size in model.by_size:
                    model.by_size[entry.size] += count

        return sorted(stats.values(), key=lambda t: (-t.total, t.team))

    def totals(self) -> dict[str, int]:
        balances = self.repo.list_balances()
        return {bucket: sum(b.bucket(bucket) for b in balances) for bucket in BUCKETS}

    def export_inventory_excel(self, path: str, actor: User | None = None, movements_limit: int = 500) -> None:
        if self.auth is not None:
            self.auth.require_action(actor, "export_report")

        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        balances = self.repo.list_balances()
        movements = self.repo.recent_movements(movements_limit)
        totals = self.totals()

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Inventory summary"
        ws["A1"].font = Font(bold=True, size=14)

        rows = [
            ("Units available", totals["available"]),
            ("Units on display (samples)", totals["sample"]),
            ("Units sold", totals["sold"]),
            ("Models in catalog", len(self.repo.list_variants())),
        ]
        for i, (label, val) in enumerate(rows):
            ws[f"A{3 + i}"] = label
            ws[f"B{3 + i}"] = int(val)
        set_widths(ws, {"A": 30, "B": 14})

        # -------- 2) Balances --------
        ws2 = wb.create_sheet("Balances")
        ws2.append(["Team", "Color", "Size", "Available", "Sample", "Sold", "Updated"])
        bold_row(ws2, 1)
        for b in balances:
            ws2.append([b.team, b.color, b.size, b.available, b.sample, b.sold, b.updated_at or ""])
        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 24, "B": 18, "C": 6, "D": 10, "E": 10, "F": 10, "G": 20})
        if ws2.max_row >= 2:
            add_table(ws2, "BalancesTable", 1, 1, ws2.max_row, 7)

        # -------- 3) Teams --------
        ws3 = wb.create_sheet("Teams")
        ws3.append(["Team", "Total available", *SIZES])
        bold_row(ws3, 1)
        for t in self.team_stats("available"):
            ws3.append([t.team, t.total, *(t.by_size[s] for s in SIZES)])
        set_widths(ws3, {"A": 24, "B": 16})

        # -------- 4) Movements --------
        ws4 = wb.create_sheet("Movements")
        ws4.append(["ID", "Created", "Date", "Team", "Color", "Size", "Kind", "Qty", "Sale price", "Note"])
        bold_row(ws4, 1)
        out_row = 2
        for m in movements:
            ws4.append([
                m.id, m.created_at, m.movement_date, m.team, m.color, m.size,
                KIND_LABELS.get(m.kind, m.kind), m.quantity,
                m.sale_price if m.sale_price is not None else "", m.note or "",
            ])
            if m.sale_price is not None:
                money(ws4[f"I{out_row}"])
            out_row += 1
        ws4.freeze_panes = "A2"
        set_widths(ws4, {"A": 8, "B": 20, "C": 12, "D": 22, "E": 16, "F": 6, "G": 12, "H": 6, "I": 12, "J": 40})
        if ws4.max_row >= 2:
            add_table(ws4, "MovementsTable", 1, 1, ws4.max_row, 10)

        wb.save(path)
