DOMAIN = "runtracker"
VERSION = "0.3.0"

# Great-circle maths
EARTH_RADIUS_KM = 6371.0

# Distance filter for a single step (km); outside this band is GPS jitter or a jump
MIN_STEP_DISTANCE_KM = 0.001       # 1 m
MAX_STEP_DISTANCE_KM = 0.05        # 50 m

# Speed filters
MAX_DEVICE_SPEED_MPS = 10.0        # device-reported speed is trusted below this
MAX_RUNNING_SPEED_KMH = 30.0       # anything at or above is not a foot run
MIN_RECORDED_SPEED_KMH = 0.5       # slower samples are not averaged
SPEED_HISTORY_SIZE = 50

# Elevation: single-step rises at or above this are treated as altimeter noise
MAX_ELEVATION_STEP_M = 10.0

SAMPLE_HISTORY_SIZE = 1000
MAX_DURATION_SECONDS = 24 * 60 * 60

# Calories
CALORIES_PER_KM = 65
DEFAULT_WEIGHT_KG = 70.0
CALORIE_MODEL_DISTANCE = "distance"
CALORIE_MODEL_MET = "met"

# (upper pace bound in min/km, MET); first matching row wins
MET_BY_PACE: tuple[tuple[float, float], ...] = (
    (6.0, 16.0),   # very fast running
    (7.0, 12.0),   # fast running
    (8.0, 10.0),   # moderate running
    (10.0, 8.0),   # light jogging
)
MET_FLOOR = 6.0    # walking / very light jogging

# A finished run below either threshold is not worth saving
MIN_SAVE_DURATION_SECONDS = 10
MIN_SAVE_DISTANCE_KM = 0.01

# Timers (seconds)
DURATION_REFRESH_INTERVAL = 1.0
QUEUE_RETRY_INTERVAL = 5.0

# Offline queue
QUEUE_STORAGE_KEY = "offline_queue"
QUEUE_MAX_RETRIES = 3

# Backend tables (PostgREST)
RUNS_TABLE = "runs"
GOALS_TABLE = "goals"
USER_ACHIEVEMENTS_TABLE = "user_achievements"

REQUEST_TIMEOUT = 5       # seconds, multiplied by attempt number for each retry
REQUEST_ATTEMPTS = 3
AVAILABILITY_TIMEOUT = 15
