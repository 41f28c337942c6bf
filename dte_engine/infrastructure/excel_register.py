"""Exporta el libro de ventas (documentos emitidos) a XLSX."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import openpyxl
import pandas as pd
import structlog
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter

from dte_engine.domain.entities import TaxDocument

logger = structlog.get_logger()

_CLP_FORMAT = '_ "$"* #,##0_ ;_ "$"* \\-#,##0_ ;_ "$"* "-"_ ;_ @_ '

REGISTER_COLUMNS = [
    "Tipo DTE",
    "Descripción",
    "Folio",
    "Fecha Emisión",
    "RUT Receptor",
    "Razón Social Receptor",
    "Monto Exento",
    "Monto Neto",
    "IVA",
    "Impuestos Adicionales",
    "Monto Total",
    "Estado",
    "Track ID",
]

SUMMARY_COLUMNS = [
    "Tipo DTE",
    "Descripción",
    "Cantidad",
    "Monto Exento",
    "Monto Neto",
    "IVA",
    "Monto Total",
]

COLUMN_FORMATS = {
    "Tipo DTE": {"alignment": Alignment(horizontal="center")},
    "Folio": {"number_format": "0", "alignment": Alignment(horizontal="center")},
    "Fecha Emisión": {"number_format": "dd/mm/yyyy", "alignment": Alignment(horizontal="center")},
    "RUT Receptor": {"alignment": Alignment(horizontal="right")},
    "Monto Exento": {"number_format": _CLP_FORMAT},
    "Monto Neto": {"number_format": _CLP_FORMAT},
    "IVA": {"number_format": _CLP_FORMAT},
    "Impuestos Adicionales": {"number_format": _CLP_FORMAT},
    "Monto Total": {"number_format": _CLP_FORMAT},
    "Cantidad": {"number_format": "0", "alignment": Alignment(horizontal="center")},
    "Estado": {"alignment": Alignment(horizontal="center")},
}

_SUMMARY_SHEET = "Resumen"


class SalesRegisterExporter:
    def __init__(self, sheet_name: str = "Libro Ventas") -> None:
        if sheet_name == _SUMMARY_SHEET:
            raise ValueError(f"El nombre de hoja '{_SUMMARY_SHEET}' está reservado")
        self.sheet_name = sheet_name

    @staticmethod
    def build_dataframe(documents: Iterable[TaxDocument]) -> pd.DataFrame:
        rows = [
            {
                "Tipo DTE": doc.document_type.value,
                "Descripción": doc.document_type.label,
                "Folio": doc.folio,
                "Fecha Emisión": pd.Timestamp(doc.issue_date),
                "RUT Receptor": doc.recipient.tax_id.formatted(),
                "Razón Social Receptor": doc.recipient.business_name,
                "Monto Exento": doc.totals.exempt,
                "Monto Neto": doc.totals.net,
                "IVA": doc.totals.tax,
                "Impuestos Adicionales": doc.totals.additional_tax,
                "Monto Total": doc.totals.total,
                "Estado": doc.state.value,
                "Track ID": doc.tracking_reference or "",
            }
            for doc in documents
        ]
        df = pd.DataFrame(rows, columns=REGISTER_COLUMNS)
        if df.empty:
            return df
        return df.sort_values(["Fecha Emisión", "Tipo DTE", "Folio"]).reset_index(drop=True)

    @staticmethod
    def build_summary(df: pd.DataFrame) -> pd.DataFrame:
        """Totales por tipo de documento."""
        if df.empty:
            return pd.DataFrame(columns=SUMMARY_COLUMNS)
        summary = (
            df.groupby(["Tipo DTE", "Descripción"], as_index=False)
            .agg(
                **{
                    "Cantidad": ("Folio", "count"),
                    "Monto Exento": ("Monto Exento", "sum"),
                    "Monto Neto": ("Monto Neto", "sum"),
                    "IVA": ("IVA", "sum"),
                    "Monto Total": ("Monto Total", "sum"),
                }
            )
        )
        return summary[SUMMARY_COLUMNS]

    def export(self, documents: Iterable[TaxDocument], output_path: Path) -> Path:
        df = self.build_dataframe(documents)
        summary = self.build_summary(df)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name=self.sheet_name, index=False)
            summary.to_excel(writer, sheet_name=_SUMMARY_SHEET, index=False)

        self._apply_formats(output_path)
        logger.info(
            "sales_register_exported",
            path=str(output_path),
            rows=len(df),
            total=int(df["Monto Total"].sum()) if not df.empty else 0,
        )
        return output_path

    @staticmethod
    def _apply_formats(path: Path) -> None:
        wb = openpyxl.load_workbook(path)
        try:
            for ws in wb.worksheets:
                headers = [cell.value for cell in ws[1]]
                for col_idx, header in enumerate(headers, start=1):
                    ws.cell(row=1, column=col_idx).font = Font(bold=True)
                    ws.column_dimensions[get_column_letter(col_idx)].width = max(
                        12, len(str(header)) + 4
                    )
                    fmt = COLUMN_FORMATS.get(header)
                    if not fmt:
                        continue
                    for row_idx in range(2, ws.max_row + 1):
                        cell = ws.cell(row=row_idx, column=col_idx)
                        if "number_format" in fmt:
                            cell.number_format = fmt["number_format"]
                        if "alignment" in fmt:
                            cell.alignment = fmt["alignment"]
                ws.freeze_panes = "A2"
            wb.save(path)
        finally:
            wb.close()
