"""State layer.

Engine outputs live in :class:`~pybimmerdash.state.store.TelemetryStore` and
leave the engine as :mod:`~pybimmerdash.state.events` instances.
"""
