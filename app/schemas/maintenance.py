from pydantic import BaseModel


class SweepOut(BaseModel):
    expired_vouchers: int
    deactivated_promotions: int
