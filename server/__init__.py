"""
server — HTTP surface
=====================

:func:`~server.api.create_app` builds a FastAPI app around a
:class:`~sim.phase_controller.PhaseController` for displays and
vehicle producers.
"""
