"""
Buspoll Services

- binding - Refresh scheduling, state cache, command dispatch
- bus - Bus transports (Modbus TCP)
"""
