"""Modelos Pydantic del servicio de export"""
from pydantic import BaseModel, Field
from typing import List, Optional

from pdfsvc.app.layout import SheetConfig


class ExportRequest(BaseModel):
    folder: str = Field(..., min_length=1, description="Carpeta YYYY-MM-DD bajo qrcodes/")
    single_per_page: bool = False
    cell_width_mm: float = Field(16.0, gt=0)
    margin_mm: float = Field(5.0, ge=0)
    gutter_mm: float = Field(2.0, ge=0)
    label_scale: float = Field(0.095, gt=0)
    label_top_pad_mm: float = Field(0.0, ge=0)
    label_nudge_mm: float = Field(0.1, ge=0)

    def sheet_config(self) -> SheetConfig:
        return SheetConfig.from_mm(
            cell_width_mm=self.cell_width_mm,
            margin_mm=self.margin_mm,
            gutter_mm=self.gutter_mm,
            label_top_pad_mm=self.label_top_pad_mm,
            label_nudge_mm=self.label_nudge_mm,
            single_per_page=self.single_per_page,
            label_scale=self.label_scale,
        )


class FolderItemResponse(BaseModel):
    name: str
    path: str
    url: str
    reference: Optional[str] = None
    sequence_number: Optional[int] = None


class FolderItemsResponse(BaseModel):
    folder: str
    items: List[FolderItemResponse]


class ExportAccepted(BaseModel):
    task_id: str
    status: str = "queued"
