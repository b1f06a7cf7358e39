# Polymarket clients
from .websocket_client import WebSocketClient
from .clob_client import CLOBClient
from .gamma_client import GammaClient
from .polygon_client import PolygonClient

__all__ = ["WebSocketClient", "CLOBClient", "GammaClient", "PolygonClient"]
