from model_port.base import ModelPort, PortStatus, RESOURCES

__all__ = ["ModelPort", "PortStatus", "RESOURCES"]
