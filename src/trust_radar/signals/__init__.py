from trust_radar.signals.emitter import EmitResult, SignalEmitter
from trust_radar.signals.store import SignalStore
