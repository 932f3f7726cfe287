"""Quiz room domain: persistence primitives, the session state machine,
score rules and game setup.

Socket handlers and HTTP routes call into ``engine`` and ``setup``; the
atomic updates the buzzer relies on live in ``store``.
"""
