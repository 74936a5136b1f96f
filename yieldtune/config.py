# config.py

from dataclasses import dataclass, field
from typing import List, Dict, Optional


@dataclass
class RecipeConfig:
    """Declarative preprocessing steps, fitted on Train only"""
    remove_cols: List[str] = field(default_factory=lambda: ['year', 'block'])
    one_hot: bool = True
    drop_zero_variance: bool = True
    corr_threshold: Optional[float] = 0.9  # None disables the correlation filter
    normalize: bool = False  # forced on for families that need scaled inputs
    impute_median: bool = True
    unseen_policy: str = 'error'  # "error" or "bucket"
    unseen_label: str = '__unseen__'

    def __post_init__(self):
        if self.unseen_policy not in ('error', 'bucket'):
            raise ValueError(f"unseen_policy must be 'error' or 'bucket' (got {self.unseen_policy!r})")
        if self.corr_threshold is not None and not 0.0 < self.corr_threshold <= 1.0:
            raise ValueError(f"corr_threshold must be in (0, 1] (got {self.corr_threshold})")


@dataclass
class TuningConfig:
    """Cross-validated hyperparameter search"""
    cv_folds: int = 5
    grid_type: str = 'latin_hypercube'  # or "grid"
    grid_size: int = 20  # number of sampled configs for latin_hypercube
    grid_levels: int = 3  # levels per numeric range for an exhaustive grid
    racing: bool = True
    burn_in: int = 3
    alpha: float = 0.05
    n_jobs: int = -1

    def __post_init__(self):
        if self.grid_type not in ('grid', 'latin_hypercube'):
            raise ValueError(f"grid_type must be 'grid' or 'latin_hypercube' (got {self.grid_type!r})")
        if self.cv_folds < 2:
            raise ValueError("cv_folds must be >= 2")
        if not 2 <= self.burn_in <= self.cv_folds:
            raise ValueError(f"burn_in must be between 2 and cv_folds={self.cv_folds} (got {self.burn_in})")


@dataclass
class SelectionConfig:
    """Candidate rules and comparison"""
    metrics: List[str] = field(default_factory=lambda: ['rmse', 'rsq'])
    rules: List[str] = field(default_factory=lambda: ['best', 'pct_loss', 'one_std_err'])
    pct_loss_limit: float = 2.0  # percent


@dataclass
class ExplainConfig:
    """Monte Carlo permutation attributions"""
    n_simulations: int = 10
    background_size: int = 100
    max_rows: Optional[int] = None  # explain every Test row by default
    chunk_size: int = 50
    n_jobs: int = 1
    observation: int = 0  # Test row position used for waterfall/force plots


@dataclass
class ModelConfig:
    """Configuration class for a single yield-model run"""
    target_col: str = 'yield'
    model_name: str = 'random_forest'
    cat_cols: List[str] = field(default_factory=lambda: ['variety', 'sowing_date', 'year', 'block'])
    numeric_cols: List[str] = field(default_factory=lambda: [
        'tmean', 'tmax', 'tmin', 'gdd', 'precip', 'radiation', 'et0',
    ])
    train_fraction: float = 0.7
    strata_bins: int = 4
    random_state: int = 10000291
    verbose: bool = True
    save_plots: bool = True
    model_params: Dict[str, object] = field(default_factory=dict)  # fixed params passed to the family
    recipe: RecipeConfig = field(default_factory=RecipeConfig)
    tuning: TuningConfig = field(default_factory=TuningConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    explain: ExplainConfig = field(default_factory=ExplainConfig)

    def __post_init__(self):
        if not 0.0 < self.train_fraction < 1.0:
            raise ValueError(f"train_fraction must be in (0, 1) (got {self.train_fraction})")
        if self.target_col in self.cat_cols or self.target_col in self.numeric_cols:
            raise ValueError(f"target '{self.target_col}' cannot also be a predictor column")
