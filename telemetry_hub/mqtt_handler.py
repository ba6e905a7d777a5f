# telemetry_hub/mqtt_handler.py
import time, logging
import paho.mqtt.client as mqtt

from .ingestion import IngestWorkerPool
from .settings import Settings

log = logging.getLogger(__name__)

def _rc_int(rc) -> int:
    # Handles paho v2.x ReasonCode objects or plain ints
    try:
        return int(getattr(rc, "value", rc))
    except (TypeError, ValueError):
        return -1


class TelemetryListener:
    """Subscribes to device telemetry topics and hands each message to the worker pool."""

    def __init__(self, settings: Settings, pool: IngestWorkerPool, client: mqtt.Client | None = None):
        self.settings = settings
        self.pool = pool
        self.client = client or mqtt.Client(
            client_id=settings.mqtt_client_id or f"telemetry-hub-{int(time.time())}",
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,  # paho 2.x
        )
        self.connected = False
        self.stats = {"rx_total": 0, "rx_dropped": 0}

        self.client.enable_logger(logging.getLogger("paho"))
        if settings.mqtt_username and settings.mqtt_password:
            self.client.username_pw_set(settings.mqtt_username, settings.mqtt_password)
        self.client.reconnect_delay_set(min_delay=1, max_delay=30)

        self.client.on_connect = self.on_connect
        self.client.on_subscribe = self.on_subscribe
        self.client.on_disconnect = self.on_disconnect
        self.client.on_message = self.on_message

    def on_connect(self, client, userdata, flags, reason_code, properties):
        rc = _rc_int(reason_code)
        if rc != mqtt.CONNACK_ACCEPTED:
            self.connected = False
            log.warning("MQTT connect failed rc=%s (5=Not authorized). Retrying…", rc)
            return
        self.connected = True
        # resubscribe on every (re)connect
        res, mid = client.subscribe(self.settings.mqtt_topic, qos=self.settings.mqtt_qos)
        log.info("MQTT connected, SUB %s res=%s mid=%s", self.settings.mqtt_topic, res, mid)

    def on_subscribe(self, client, userdata, mid, reason_codes, properties):
        if any(_rc_int(rc) >= 0x80 for rc in reason_codes):
            log.warning("MQTT subscription rejected by broker ACL mid=%s codes=%s", mid, reason_codes)

    def on_disconnect(self, client, userdata, flags, reason_code, properties):
        self.connected = False
        log.warning("MQTT disconnected rc=%s. Reconnecting…", _rc_int(reason_code))

    def on_message(self, client, userdata, msg):
        self.stats["rx_total"] += 1
        try:
            self.pool.submit(msg.topic, msg.payload)
        except RuntimeError:
            # pool already shut down
            self.stats["rx_dropped"] += 1
            log.warning("dropping message, ingest pool is shut down", extra={"topic": msg.topic})

        # Occasionally log counters so you know it's alive
        if self.stats["rx_total"] % 100 == 1:
            log.info("MQTT msg counts: total=%s pool=%s", self.stats["rx_total"], self.pool.stats())

    def start(self) -> None:
        log.info(
            "MQTT bootstrapping host=%s port=%s user=%s topic=%s",
            self.settings.mqtt_host,
            self.settings.mqtt_port,
            "<set>" if self.settings.mqtt_username else "<none>",
            self.settings.mqtt_topic,
        )
        self.client.connect_async(self.settings.mqtt_host, self.settings.mqtt_port, keepalive=30)
        self.client.loop_start()

    def stop(self) -> None:
        self.client.disconnect()
        self.client.loop_stop()
        self.pool.shutdown(wait=True)

    def health(self) -> None:
        if not self.connected:
            raise ConnectionError("MQTT client is not connected")
