from datetime import datetime

from pydantic import BaseModel, Field


class PropertyCreateRequest(BaseModel):
    title: str
    address: str
    city: str
    price: float | None = None


class PropertyResponse(BaseModel):
    id: str
    title: str
    address: str
    city: str
    price: float | None = None
    created_at: datetime | None = None


class BrokerCreateRequest(BaseModel):
    full_name: str
    email: str
    phone: str | None = None
    is_active: bool = True


class BrokerResponse(BaseModel):
    id: str
    full_name: str
    email: str
    phone: str | None = None
    is_active: bool = True
    created_at: datetime | None = None


class PropertyBrokerAssignRequest(BaseModel):
    broker_id: str
    is_primary: bool = False
    is_active: bool = True


class PropertyBrokerResponse(BaseModel):
    property_id: str
    broker_id: str
    is_primary: bool = False
    is_active: bool = True
    broker: BrokerResponse | None = None


class PropertyBrokerListResponse(BaseModel):
    property_id: str
    brokers: list[PropertyBrokerResponse] = Field(default_factory=list)
