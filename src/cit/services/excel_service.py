from __future__ import annotations

import logging

from openpyxl import load_workbook

from cit.domain.errors import ValidationError
from cit.domain.models import SIZES, User

log = logging.getLogger(__name__)


class ExcelService:
    def __init__(self, repo, ledger_service, auth_service):
        self.repo = repo
        self.ledger = ledger_service
        self.auth = auth_service

    def import_stock_excel(self, path: str, actor: User | None, note: str | None = None) -> tuple[int, int]:
        """
        Excel represents INCOMING stock (delta to add), not absolute stock.
        Headers:
          team | color | size | quantity
        Valid rows are submitted as a single batch of `in` movements.
        """
        self.auth.require_action(actor, "import_excel")

        wb = load_workbook(path)
        ws = wb.active

        headers = {}
        for col in range(1, ws.max_column + 1):
            v = ws.cell(row=1, column=col).value
            if isinstance(v, str):
                headers[v.strip().lower()] = col

        required = ["team", "color", "size", "quantity"]
        for r in required:
            if r not in headers:
                raise ValidationError(f"Missing column header: {r}")

        lines = []
        skipped = 0

        for row in range(2, ws.max_row + 1):
            try:
                team = ws.cell(row=row, column=headers["team"]).value
                color = ws.cell(row=row, column=headers["color"]).value
                size = ws.cell(row=row, column=headers["size"]).value
                qty = ws.cell(row=row, column=headers["quantity"]).value

                if not team or not color or not size or qty is None:
                    skipped += 1
                    continue

                size = str(size).strip().upper()
                qty = int(float(qty))
                if size not in SIZES or qty <= 0:
                    skipped += 1
                    continue

                variant = self.repo.find_variant(str(team).strip(), str(color).strip())
                if not variant:
                    log.warning("Excel import skipped row %s: unknown model %s / %s", row, team, color)
                    skipped += 1
                    continue

                lines.append({"product_id": variant.id, "size": size, "quantity": qty})
            except (TypeError, ValueError) as e:
                log.warning("Excel import skipped row %s: %s", row, e)
                skipped += 1

        if not lines:
            return 0, skipped

        result = self.ledger.submit_batch(lines, actor, kind="in", note=note or "Excel stock intake")
        if result.failed:
            log.warning("Excel import batch=%s failed=%s last_error=%s", result.batch_id, result.failed, result.last_error)
        return result.applied, skipped + result.failed
