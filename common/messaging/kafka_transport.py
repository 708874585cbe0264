import json
import time
from typing import Callable, Iterator, List, Optional

from kafka import KafkaConsumer, KafkaProducer
from kafka.errors import KafkaError
from marshmallow import ValidationError

from common.exception.exceptions import TransientTransportError
from common.messaging.envelope import MessageEnvelope, envelope_schema, deserialize_envelope
from common.utils.logging_utils import get_logger

logger = get_logger('kafka_transport')


class KafkaTransport:
    """
    MessageTransport over kafka-python.

    Records are keyed by correlation ID so one saga's messages share a partition,
    which keeps version conflicts between orchestrator consumers rare.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        client_id: str,
        group_id: str,
        subscribe_topics: List[str],
        topic_for: Callable[[MessageEnvelope], str],
        send_timeout: float = 5,
        restart_backoff: float = 1.0,
        max_restart_backoff: float = 30.0,
        on_malformed: Optional[Callable[[bytes, Exception], None]] = None
    ):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.group_id = group_id
        self.subscribe_topics = subscribe_topics
        self.topic_for = topic_for
        self.send_timeout = send_timeout
        self.restart_backoff = restart_backoff
        self.max_restart_backoff = max_restart_backoff
        self.on_malformed = on_malformed
        self._producer = None
        self._consumer = None
        self._running = False

    def _get_producer(self) -> KafkaProducer:
        if self._producer is None:
            try:
                self._producer = KafkaProducer(
                    bootstrap_servers=self.bootstrap_servers.split(','),
                    client_id=self.client_id,
                    value_serializer=lambda v: json.dumps(v).encode('utf-8'),
                    key_serializer=lambda k: k.encode('utf-8') if k else None,
                    acks='all',  # wait for every in-sync replica
                    retries=3,
                    max_in_flight_requests_per_connection=1,
                    compression_type='gzip'
                )
                logger.info(f"Kafka Producer initialized: {self.bootstrap_servers}")
            except KafkaError as e:
                raise TransientTransportError(message=f"Kafka Producer unavailable: {e}") from e
        return self._producer

    def publish(self, envelope: MessageEnvelope) -> None:
        producer = self._get_producer()
        topic = self.topic_for(envelope)

        try:
            future = producer.send(
                topic,
                value=envelope_schema.dump(envelope),
                key=envelope.correlation_id
            )
            # NOTE : block until acked, the relay only marks an entry published after this returns
            record_metadata = future.get(timeout=self.send_timeout)
        except KafkaError as e:
            logger.warning(f"Failed to publish {envelope.type} ({envelope.message_id}) to {topic}: {e}")
            raise TransientTransportError(
                message=f"Kafka publish failed for {envelope.message_id}: {e}",
                topic=topic
            ) from e

        logger.debug(
            f"Envelope published - Topic: {record_metadata.topic}, "
            f"Partition: {record_metadata.partition}, Offset: {record_metadata.offset}"
        )

    def _create_consumer(self) -> KafkaConsumer:
        consumer = KafkaConsumer(
            *self.subscribe_topics,
            bootstrap_servers=self.bootstrap_servers.split(','),
            group_id=self.group_id,
            client_id=self.client_id,
            value_deserializer=lambda m: m,
            auto_offset_reset='earliest',
            # NOTE : offsets are committed only after the handler got the record back
            enable_auto_commit=False,
            session_timeout_ms=30000,
            max_poll_records=100
        )
        logger.info(f"Kafka Consumer initialized: {self.bootstrap_servers}, Topics: {self.subscribe_topics}")
        return consumer

    def subscribe(self) -> Iterator[MessageEnvelope]:
        self._running = True
        backoff = self.restart_backoff

        while self._running:
            try:
                if self._consumer is None:
                    self._consumer = self._create_consumer()

                for message in self._consumer:
                    if not self._running:
                        break

                    logger.debug(
                        f"Consumed message - Topic: {message.topic}, "
                        f"Partition: {message.partition}, Offset: {message.offset}"
                    )

                    try:
                        envelope = deserialize_envelope(message.value)
                    except ValidationError as e:
                        logger.error(f"Malformed envelope at {message.topic}:{message.offset}: {e.messages}")
                        if self.on_malformed:
                            self.on_malformed(message.value, e)
                        self._consumer.commit()
                        continue

                    yield envelope

                    # NOTE : resumed by the caller, so the record has been handled
                    self._consumer.commit()
                    backoff = self.restart_backoff

            except KafkaError as e:
                logger.error(f"Kafka error while consuming, restarting in {backoff}s: {e}")
                self._close_consumer()
                time.sleep(backoff)
                backoff = min(backoff * 2, self.max_restart_backoff)

        self._close_consumer()

    def stop(self):
        logger.info("Stopping Kafka Consumer...")
        self._running = False

    def _close_consumer(self):
        if self._consumer:
            try:
                self._consumer.close()
            finally:
                self._consumer = None
            logger.info("Kafka Consumer closed")

    def close(self) -> None:
        self.stop()
        self._close_consumer()
        if self._producer:
            self._producer.flush()
            self._producer.close()
            self._producer = None
            logger.info("Kafka Producer closed")
