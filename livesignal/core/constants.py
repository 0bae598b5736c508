"""Signaling protocol constants."""


class SignalingConstants:
    """Wire format and rendezvous contract constants."""

    # Message schema
    SCHEMA_VERSION = 1
    TYPE_OFFER = "offer"
    TYPE_ANSWER = "answer"

    # Host-multiplexed envelope payload keys
    ENVELOPE_OFFER = "offer"
    ENVELOPE_ANSWER = "answer"
    ENVELOPE_ICE = "ice"

    # Rendezvous HTTP endpoints
    HOST_PATH = "/api/host"
    CLIENT_PATH = "/api/client"

    # Rendezvous websocket endpoints (scoped by ?code=)
    HOST_CHANNEL_PATH = "/ws/host"
    CLIENT_CHANNEL_PATH = "/ws/client"

    # Rendezvous status codes
    STATUS_CREATED = 201
    STATUS_UNAUTHORIZED = 401
    STATUS_NOT_FOUND = 404
    STATUS_CONFLICT = 409

    # The rendezvous server only upgrades connections offering this sub-protocol
    SUBPROTOCOL = "livestream"

    # Finished host sessions kept for inspection
    OUTCOME_HISTORY = 256

    # Timeouts (seconds)
    OPEN_TIMEOUT = 10.0
    HTTP_TIMEOUT = 10.0
