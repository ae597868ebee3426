"""Order fulfillment, COD settlement and GST invoicing back office."""

__version__ = "1.0.0"
