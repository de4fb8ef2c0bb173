# recordosc — record and replay timestamped packet streams
__version__ = "0.1.0"
