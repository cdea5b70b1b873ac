"""
Constants used across the matchmaking and rating system.
"""

# Rating constants
INITIAL_RATING = 1200
K = 32  # Flat K-factor used when a reported result is confirmed
GUEST_DELTA_MULTIPLIER = 1.5

# Dynamic K-factor tiers (administrative recompute)
K_COACH = 0
K_GUEST = 80
K_TOURNAMENT = 40
K_PLACEMENT = 64
K_ESTABLISHED = 20
K_DEFAULT = 32
PLACEMENT_GAMES = 10
ESTABLISHED_GAMES = 100
ESTABLISHED_RATING = 1800

# Priority scoring weights
INITIAL_BOOST = 5000
WAIT_POINTS_PER_MINUTE = 200
GAME_PENALTY_FACTOR = 500
GUEST_BONUS = 3000
VIP_GUEST_BONUS = 999999
DEPARTURE_BONUS = 8000
DEPARTURE_WINDOW_MINUTES = 40
NEUTRAL_PRIORITY = 0

# Matchmaking thresholds
VIP_GUEST_RATING = 2000
VIP_PARTNER_RATING = 1800
POOL_SIZE = 6
WILDCARD_RANKS = (6, 10)  # zero-based slice: ranks 7-10
OUTLIER_GAP = 400

# Guest registration
GUEST_NAME_SUFFIX = " (G)"
GUEST_NTRP_BOOST = 0.25

# Partner recommendation
PARTNER_LOOKBACK_MATCHES = 100
PARTNER_MIN_GAMES = 2

MVP_TAGS = (
    "Strong Serve",
    "Iron Defense",
    "High IQ Play",
    "Lightning Fast",
    "Net Dominator",
    "Great Teamwork",
)
