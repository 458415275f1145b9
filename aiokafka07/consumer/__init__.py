from .consumer import Kafka07Consumer

__all__ = ["Kafka07Consumer"]
