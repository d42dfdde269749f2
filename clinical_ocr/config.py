"""
Configuration for the Clinical Handwriting OCR System
"""

import os

# Recognition engines
OCR_ENGINES = {
    'tesseract': True,  # Honours page segmentation modes
    'easyocr': True,    # Strong on handwriting, ignores layout modes
}

DEFAULT_ENGINE = os.getenv('CLINICAL_OCR_ENGINE', 'tesseract')

# Tesseract Settings
TESSERACT_CONFIG = {
    'lang': 'eng',
    'oem': 3,  # OEM 3: default (LSTM + legacy where available)
}

# EasyOCR Settings (optimized for handwriting)
EASYOCR_CONFIG = {
    'languages': ['en'],
    'gpu': False,
    'decoder': 'beamsearch',
    'beam_width': 5,
}

# Page segmentation modes to try: Auto, Block, Sparse, Sparse OSD, Raw Line
PSM_MODES = [3, 6, 11, 12, 13]

# Preprocessing strategies, cheapest and most reliable first
PREPROCESSING_STRATEGIES = [
    'otsu_threshold',       # Otsu's adaptive binarization
    'morphology_clean',     # Dilation followed by binarization
    'deskew_enhance',       # Deskew + CLAHE enhancement
    'bilateral_sharpen',    # Edge-preserving blur + threshold
    'clahe_morphology',     # CLAHE + morphological opening
    'multi_scale_process',  # Scale first, then threshold
]

# Enhancement presets (contrast/brightness/sharpen/denoise/binarize)
PREPROCESSING_PRESETS = {
    'standard': {'contrast': 1.2, 'brightness': 1.0, 'sharpen': True, 'denoise': True, 'binarize': False},
    'high_contrast': {'contrast': 2.0, 'brightness': 1.1, 'sharpen': True, 'denoise': True, 'binarize': False},
    'binary': {'contrast': 1.5, 'brightness': 1.0, 'sharpen': True, 'denoise': True, 'binarize': True, 'threshold': 128},
    'binary_high': {'contrast': 1.8, 'brightness': 1.2, 'sharpen': True, 'denoise': True, 'binarize': True, 'threshold': 100},
    'binary_low': {'contrast': 1.3, 'brightness': 0.9, 'sharpen': True, 'denoise': True, 'binarize': True, 'threshold': 160},
    'adaptive': {'contrast': 1.4, 'brightness': 1.0, 'sharpen': True, 'denoise': True, 'adaptive_threshold': True},
}

# Applied once to the source image before any pass
BASE_ENHANCEMENT = {
    'contrast': 1.3,
    'brightness': 1.1,
    'sharpen': True,
    'denoise': True,
}

# Image scaling factors to try
SCALE_FACTORS = [1.0, 1.5, 2.0, 2.5, 3.0]

# Rotation angles (degrees) swept when the main passes stay below ROTATION_TRIGGER
ROTATION_ANGLES = [-5, -2, 0, 2, 5]

# Confidence thresholds (0-100)
CONFIDENCE_THRESHOLDS = {
    'target': float(os.getenv('CLINICAL_OCR_TARGET_CONFIDENCE', 99)),
    'minimum': float(os.getenv('CLINICAL_OCR_MIN_CONFIDENCE', 60)),
    'fusion_shortcut': 90,   # Best pass at or above this is returned as-is
    'rotation_trigger': 85,  # Rotation sweep only runs below this
    'verify_warning': 70,    # Fused average below this asks for manual review
}

FUSION_CONFIDENCE_BOOST = 10
FUSION_CONFIDENCE_CAP = 99

# Fuzzy match tolerance: share of a word's length that may differ
FUZZY_MAX_EDIT_RATIO = 0.3

# Minimum candidates needed before fusion
MIN_CANDIDATES = 1

# Parallel passes (1 = sequential)
MAX_WORKERS = int(os.getenv('CLINICAL_OCR_MAX_WORKERS', 1))

# Wall-clock budget in seconds for one recognition job (unset = unbounded)
TIME_BUDGET = float(os.getenv('CLINICAL_OCR_TIME_BUDGET')) if os.getenv('CLINICAL_OCR_TIME_BUDGET') else None

# Correction dictionary
DEFAULT_DICTIONARY_PATH = os.path.join(os.path.dirname(__file__), 'data', 'medical_corrections.csv')
DICTIONARY_PATH = os.getenv('CLINICAL_OCR_DICTIONARY', DEFAULT_DICTIONARY_PATH)

# Upload handling
ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'bmp', 'tiff', 'webp'}
MAX_UPLOAD_BYTES = int(os.getenv('CLINICAL_OCR_MAX_UPLOAD_BYTES', 16 * 1024 * 1024))
