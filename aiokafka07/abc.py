import abc


class ConsumerHandler(abc.ABC):
    """
    A callback interface that the user implements to plug the application
    into :class:`.Kafka07Consumer`.

    Only :meth:`process_message` is required. The other hooks have defaults:
    payloads are passed through untouched, offsets are not persisted and
    brokers without a known offset are read from their earliest available
    message.

    Example::

        class PrintHandler(ConsumerHandler):

            def decode_payload(self, payload):
                return payload.decode("utf-8")

            async def process_message(self, value, message):
                print(message.topic, message.partition, value)
    """

    def decode_payload(self, payload):
        """Turn the raw payload bytes into the value given to
        :meth:`process_message`. Returns the bytes unchanged by default.
        """
        return payload

    @abc.abstractmethod
    def process_message(self, value, message):
        """
        A coroutine or function called once for every consumed message, in
        the order messages are read.

        Arguments:
            value: result of :meth:`decode_payload` for the message payload
            message (KafkaMessage): the message, including a snapshot of the
                per broker read offsets right after it
        """

    def get_offset_store(self):
        """Return the :class:`KeyValueStore` read offsets are persisted to,
        or `None` to keep offsets in memory only.
        """
        return None

    def get_default_offset(self, broker, tp):
        """Offset to start reading `tp` from on `broker` when none is known.

        Either a byte position or one of the special values ``-2`` (earliest)
        and ``-1`` (latest). `None`, the default, leaves the choice to the
        consumer's ``auto_offset_reset`` setting, which defaults to earliest.
        """
        return None


class KeyValueStore(abc.ABC):
    """Ordered byte key-value store used to persist read offsets.

    Offsets are only written and range scanned.
    """

    @abc.abstractmethod
    def write(self, key: bytes, value: bytes) -> None:
        pass

    @abc.abstractmethod
    def scan(self, start: bytes, stop: bytes):
        """Iterate over ``(key, value)`` pairs with ``start <= key < stop``
        in key order.
        """


__all__ = ["ConsumerHandler", "KeyValueStore"]
