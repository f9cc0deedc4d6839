"""Workout session and progression engines.

The modules in this package have no user interface dependencies apart from
:mod:`companion.session_controller`, which drives the session engine from the
Kivy clock.
"""
