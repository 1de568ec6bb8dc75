"""Pydantic models for the Plaud cloud API wire format."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict


class PlaudDevice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sn: str
    name: str = ""
    model: str = ""
    version_number: int = 0


class PlaudRecording(BaseModel):
    """One entry of ``data_file_list``. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    id: str
    filename: str = ""
    keywords: List[str] = []
    filesize: int = 0
    filetype: str = ""
    fullname: str = ""
    file_md5: str = ""
    ori_ready: bool = False
    version: int = 0
    version_ms: int = 0
    edit_time: int = 0
    edit_from: str = ""
    is_trash: bool = False
    start_time: int = 0  # Unix timestamp in milliseconds
    end_time: int = 0
    duration: int = 0  # milliseconds
    timezone: int = 0
    zonemins: int = 0
    scene: int = 0
    filetag_id_list: List[str] = []
    serial_number: str = ""
    is_trans: bool = False
    is_summary: bool = False

    @property
    def version_key(self) -> Tuple[int, int]:
        return (self.version, self.version_ms)


class PlaudContentItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data_id: str
    data_type: str = ""  # "transaction" | "outline" | "auto_sum_note"
    task_status: int = 0
    data_title: str = ""
    data_tab_name: str = ""
    data_link: str = ""
    extra: Optional[Dict[str, Any]] = None


class PlaudPreDownloadContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data_id: str
    data_content: str = ""


class PlaudFileDetail(BaseModel):
    """The ``data`` object of ``/file/detail/{id}``: the content manifest."""

    model_config = ConfigDict(extra="allow")

    file_id: str
    file_name: str = ""
    file_version: int = 0
    duration: int = 0
    is_trash: bool = False
    start_time: int = 0
    scene: int = 0
    serial_number: str = ""
    content_list: List[PlaudContentItem] = []
    pre_download_content_list: List[PlaudPreDownloadContent] = []


@dataclass
class RecordingPage:
    """One page of the remote catalog plus the cursor to the next one."""

    recordings: List[PlaudRecording] = field(default_factory=list)
    next_cursor: Optional[str] = None
    total: Optional[int] = None
