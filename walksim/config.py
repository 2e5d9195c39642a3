"""Configuration settings for WalkSim."""

CONFIG = {
    "tick_interval_ms": 1000,  # milliseconds between progress ticks
    "default_speed_kmh": 5.0,  # km/h - also used when a saved walk has no speed
    "average_step_length": 0.762,  # meters per step
    "step_batch_interval": 60,  # seconds between step ledger syncs
    "ledger_timeout": 10,  # seconds - bound on any single ledger call
    "finalize_timeout": 30,  # seconds to wait for the final flush + session record
    "projection_tolerance": 1e-6,  # lat/lon fraction agreement for on-route matching
    "state_db_path": "walksim_state.db",
    "ledger_db_path": "walksim_ledger.db",
    "session_title": "Walk",
}
