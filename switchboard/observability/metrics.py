from __future__ import annotations
from prometheus_client import Counter, Gauge

inbound_messages = Counter("swb_inbound_messages_total", "Inbound envelopes published to the bus", ["channel"])
inbound_dropped = Counter("swb_inbound_dropped_total", "Inbound messages dropped before the bus", ["channel", "reason"])
outbound_messages = Counter("swb_outbound_messages_total", "Outbound envelopes handed to adapters", ["channel", "status"])
outbound_dropped = Counter("swb_outbound_dropped_total", "Outbound envelopes with no registered channel", ["channel"])
reconnects = Counter("swb_reconnects_total", "Connection attempts after a backoff", ["channel"])
send_retries = Counter("swb_send_retries_total", "Send attempts retried after a failure", ["channel", "reason"])
token_refreshes = Counter("swb_token_refreshes_total", "Credential refreshes", ["channel", "status"])
connection_state = Gauge("swb_connection_state", "1 for the channel's current connection state", ["channel", "state"])
