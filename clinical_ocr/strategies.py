"""
Preprocessing recipes and the strategy space searched by the orchestrator
"""

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from .config import (
    PREPROCESSING_PRESETS,
    PREPROCESSING_STRATEGIES,
    PSM_MODES,
    ROTATION_ANGLES,
    SCALE_FACTORS,
)
from .preprocessing import ImagePreprocessor

SCALE_STEP = 'scale'


@dataclass(frozen=True)
class TransformStep:
    operation: str
    params: Tuple[Tuple[str, object], ...] = ()


def step(operation, /, **params) -> TransformStep:
    return TransformStep(operation, tuple(sorted(params.items())))


@dataclass(frozen=True)
class PreprocessingRecipe:
    """
    Named, ordered list of transforms.

    A bare `scale` step marks where the pass's scale factor is applied;
    recipes without one are scaled after their last step.
    """
    name: str
    steps: Tuple[TransformStep, ...]

    def apply(self, buffer, scale=1.0, preprocessor=None):
        preprocessor = preprocessor or ImagePreprocessor()
        scaled = False
        for transform in self.steps:
            if transform.operation == SCALE_STEP and not transform.params:
                buffer = preprocessor.scale(buffer, scale)
                scaled = True
            else:
                buffer = preprocessor.apply(buffer, transform.operation, **dict(transform.params))
        if not scaled:
            buffer = preprocessor.scale(buffer, scale)
        return buffer


BUILTIN_RECIPES = {
    'otsu_threshold': PreprocessingRecipe('otsu_threshold', (
        step('adaptive_threshold'),
    )),
    'morphology_clean': PreprocessingRecipe('morphology_clean', (
        step('morphology', operation='dilate'),
        step('adaptive_threshold'),
    )),
    # Angle 0 keeps the page as captured; skewed pages are covered by the rotation sweep
    'deskew_enhance': PreprocessingRecipe('deskew_enhance', (
        step('deskew', angle=0),
        step('clahe', clip_limit=2.0, tile_size=8),
    )),
    'bilateral_sharpen': PreprocessingRecipe('bilateral_sharpen', (
        step('bilateral_filter', radius=9, sigma_space=75.0, sigma_color=75.0),
        step('adaptive_threshold'),
    )),
    'clahe_morphology': PreprocessingRecipe('clahe_morphology', (
        step('clahe', clip_limit=2.0, tile_size=8),
        step('morphology', operation='open'),
    )),
    'multi_scale_process': PreprocessingRecipe('multi_scale_process', (
        step(SCALE_STEP),
        step('adaptive_threshold'),
    )),
}


def preset_recipe(name) -> PreprocessingRecipe:
    """Recipe wrapping one of the enhancement presets"""
    return PreprocessingRecipe(name, (step('enhance', **PREPROCESSING_PRESETS[name]),))


def rotation_recipe(angle) -> PreprocessingRecipe:
    return PreprocessingRecipe(f'rotation_{angle}deg', (
        step('deskew', angle=angle),
        step('adaptive_threshold'),
    ))


@dataclass(frozen=True)
class Strategy:
    """One point of the search space"""
    recipe: PreprocessingRecipe
    scale: float
    mode: int

    @property
    def name(self):
        return f"{self.recipe.name}@{self.scale}x/psm{self.mode}"


class StrategyCatalog:
    """
    Fixed cross product of recipes x scale factors x recognition modes,
    iterated recipe-first in priority order
    """

    def __init__(self, recipes=None, scale_factors=None, modes=None, rotation_angles=None):
        if recipes is None:
            recipes = [BUILTIN_RECIPES[name] for name in PREPROCESSING_STRATEGIES]
        self.recipes = tuple(recipes)
        self.scale_factors = tuple(SCALE_FACTORS if scale_factors is None else scale_factors)
        self.modes = tuple(PSM_MODES if modes is None else modes)
        angles = ROTATION_ANGLES if rotation_angles is None else rotation_angles
        self.rotation_angles = tuple(a for a in angles if a != 0)

        if not self.recipes or not self.scale_factors or not self.modes:
            raise ValueError("Strategy catalog needs at least one recipe, scale factor and mode")

    @classmethod
    def with_presets(cls, **kwargs):
        """Built-in recipes followed by the enhancement presets"""
        recipes = [BUILTIN_RECIPES[name] for name in PREPROCESSING_STRATEGIES]
        recipes += [preset_recipe(name) for name in PREPROCESSING_PRESETS]
        return cls(recipes=recipes, **kwargs)

    def units(self) -> Iterator[Tuple[PreprocessingRecipe, float, Tuple[int, ...]]]:
        """(recipe, scale, modes) groups sharing one preprocessed buffer"""
        for recipe in self.recipes:
            for scale in self.scale_factors:
                yield recipe, scale, self.modes

    def rotation_units(self, mode: Optional[int] = None):
        mode = self.modes[0] if mode is None else mode
        for angle in self.rotation_angles:
            yield rotation_recipe(angle), 1.0, (mode,)

    def __iter__(self) -> Iterator[Strategy]:
        for recipe, scale, modes in self.units():
            for mode in modes:
                yield Strategy(recipe, scale, mode)

    def __len__(self):
        return len(self.recipes) * len(self.scale_factors) * len(self.modes)
