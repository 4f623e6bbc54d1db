from enum import Enum


class ReportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"
    PDF = "pdf"


class MovementGroupBy(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    PRODUCT = "product"
    CATEGORY = "category"


class DeliveryTimeGroupBy(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    CUSTOMER = "customer"
