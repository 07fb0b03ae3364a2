# Overview: Store lifecycle signals consumed by UI-layer collaborators.

from blinker import Namespace

_signals = Namespace()

# sender: the Flask app; kwargs: reason, size
snapshot_saved = _signals.signal("snapshot-saved")

# sender: the Flask app; kwargs: path
snapshot_exported = _signals.signal("snapshot-exported")

# sender: the Flask app; kwargs: generation.
# Anything cached from the previous handle is invalid once this fires.
store_replaced = _signals.signal("store-replaced")
