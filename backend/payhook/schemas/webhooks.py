"""Pydantic schemas for admin responses"""
from pydantic import BaseModel


class RegrantResponse(BaseModel):
    ok: bool
    transaction_id: int
    entitlements: int
