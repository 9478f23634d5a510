"""
ENQUIRY CRM - Advertisement lead models
Rows are validated by services.advertisement_import, not here, so that a bad
row is reported as "Row N: ..." instead of failing the whole request.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict

Cell = Union[str, int, float, None]


class AdvertisementRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Cell = None
    phoneNo: Cell = None
    email: Cell = None
    aadharNo: Cell = None
    panNo: Cell = None


class AdvertisementImport(BaseModel):
    rows: List[AdvertisementRow]


class AdvertisementUpdate(BaseModel):
    name: Optional[str] = None
    phoneNo: Optional[str] = None
    email: Optional[str] = None
    aadharNo: Optional[str] = None
    panNo: Optional[str] = None
