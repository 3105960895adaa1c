"""
Centralized configuration for the white-crowned sparrow territory analysis.

All analysis parameters, thresholds, column contracts and paths are defined
here with inline notes justifying each choice. Functions elsewhere accept
``None`` for these parameters and fall back to the values below.
"""

# ─── PATHS ───────────────────────────────────────────────────────────────
DEFAULT_TERRITORY_CSV = "./data/WCS2021_territories.csv"
DEFAULT_CONDITION_CSV = "./data/condition_data.csv"
DEFAULT_MODEL_CSV = "./data/territory_model_data.csv"
DEFAULT_OUTPUT_DIR = "./outputs"

# ─── PROJECTION ──────────────────────────────────────────────────────────
# Field sites (San Francisco Bay Area) fall in UTM zone 10N. NAD83 matches
# the datum of the handheld GPS exports.
UTM_PROJ = "+proj=utm +zone=10 +datum=NAD83 +units=m +no_defs"

# Valid geographic domain for input coordinates (degrees).
LONGITUDE_RANGE = (-180.0, 180.0)
LATITUDE_RANGE = (-90.0, 90.0)

# Projections without a declared area of use (proj4 strings) accept fixes
# within this many degrees of their central meridian. Transverse Mercator
# distortion grows quickly past 1.5 zone widths; fixes further out are data
# entry errors at a single-region field site.
UTM_MAX_MERIDIAN_OFFSET = 9.0

# ─── KERNEL DENSITY (HOME RANGE) PARAMETERS ──────────────────────────────
# Following Worton (1989) and the adehabitatHR defaults (Calenge 2006):
# bivariate normal kernel, reference bandwidth
#   h_ref = 0.5 * (sd_x + sd_y) * n^(-1/6),
# evaluated on a 60 x 60 grid whose extent is the point range widened by
# one span on each side.
# Citation: Worton, B.J. (1989). Kernel methods for estimating the
#           utilization distribution. Ecology, 70(1), 164-168.
# Citation: Calenge, C. (2006). The package adehabitat. Ecological
#           Modelling, 197, 516-519.
KDE_GRID_SIZE = 60
KDE_GRID_EXTENT = 1.0
# A fixed bandwidth applied to a tight subsample must still fit on the grid.
KDE_MIN_MARGIN_H = 4.0
MIN_POINTS_FOR_KDE = 5

# Contour levels exported for the territory table. 75% is the territory
# definition used in the models; 95% is used for the sample-size check.
TERRITORY_PERCENTS = (25, 50, 75, 95)
TERRITORY_PERCENT = 75

# ─── SAMPLE-SIZE VALIDATION ──────────────────────────────────────────────
# Locations are subsampled in steps of 10 up to the largest per-bird count
# (90). 100 draws per size gives a stable standard error of the mean area.
# Following Seaman et al. (1999): territory area estimates should plateau
# once sample size is adequate.
# Citation: Seaman, D.E. et al. (1999). Effects of sample size on kernel
#           home range estimates. J. Wildlife Management, 63(2), 739-747.
VALIDATION_SAMPLE_SIZES = tuple(range(10, 100, 10))
VALIDATION_TRIALS = 100
VALIDATION_PERCENT = 95
VALIDATION_SEED = 42
VALIDATION_PROGRESS_EVERY = 500  # log progress every N trials
# Relative change in mean area between the two largest sample sizes below
# which the estimate is considered to have plateaued.
PLATEAU_TOLERANCE = 0.05

# ─── BODY CONDITION (SCALED MASS INDEX) ──────────────────────────────────
# Following Peig & Green (2009): SMI = M_i * (L0 / L_i)^b_SMA with
# b_SMA = b_OLS / r.
# Citation: Peig, J. & Green, A.J. (2009). New perspectives for estimating
#           body condition from mass/length data. Oikos, 118, 1883-1891.
MIN_INDIVIDUALS_FOR_CONDITION = 3

# ─── MODEL SELECTION ─────────────────────────────────────────────────────
# Candidate set: every subset of the four predictors (16 models).
# Ranked by AICc (Burnham & Anderson 2002).
MODEL_PREDICTORS = ("comm_distance", "age", "condition", "noise")
MODEL_RESPONSE = "area_75"
HABITAT_GROUPS = ("urban", "rural")
SIGNIFICANCE_ALPHA = 0.05

# ─── OUTPUT ──────────────────────────────────────────────────────────────
OUTPUT_FILES = {
    "territory_areas": "territory_areas.csv",
    "territory_areas_long": "territory_areas_long.csv",
    "smoothing_parameters": "smoothing_parameters.csv",
    "contours": "territory_contours.gpkg",
    "trials": "sample_size_trials.csv",
    "summary": "sample_size_summary.csv",
    "condition": "condition_index.csv",
    "model_selection": "model_selection.csv",
    "habitat_tests": "habitat_tests.csv",
    "run_result": "analysis_run.json",
}
PLOTS_SUBDIR = "plots"
MAP_DPI = 200
