from typing import List
from pydantic import BaseModel, ConfigDict, Field


class BalancesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str = Field(min_length=1, description="Holder address")
    asset_ids: List[str] = Field(alias="assetIds", min_length=1, description="Asset identifiers")


class PricesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    asset_ids: List[str] = Field(alias="assetIds", min_length=1, description="Asset identifiers")
    currency: str = Field(default="usd", description="Quote currency")


class PortfolioRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str = Field(min_length=1, description="Holder address")
    asset_ids: List[str] = Field(alias="assetIds", min_length=1, description="Asset identifiers")
    currency: str = Field(default="usd", description="Quote currency")
