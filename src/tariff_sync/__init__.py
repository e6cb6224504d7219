"""tariff-sync: scheduled Wildberries box-tariff history and snapshot publishing."""

__version__ = "0.1.0"
