"""Habit reminder scheduling and delivery (scanner, dispatcher, advancer, recovery, health).

Nothing here runs as a daemon. Each job (scan cycle, recovery sweep, health
check) is started by an external trigger, either Celery beat or the CLI, and
runs to completion against the database and the SMS gateway.
"""
