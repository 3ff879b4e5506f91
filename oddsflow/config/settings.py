"""
Oddsflow Configuration
"""
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional
from pathlib import Path


class Settings(BaseSettings):
    # Project paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent
    DATA_DIR: Path = Field(default_factory=lambda: Path(__file__).parent.parent.parent / "data")
    
    # Database
    DB_PATH: Path = Field(default_factory=lambda: Path(__file__).parent.parent.parent / "data" / "oddsflow.db")
    
    # Outcome simulator
    SIM_TRIALS: int = 800  # Clamped to [100, 3000] by the simulator
    SIM_SEED: Optional[int] = None  # None = fresh entropy per engine
    
    # Adaptive baseline (EWMA)
    DEFAULT_ALPHA: float = 0.25
    ALPHA_MIN: float = 0.01
    ALPHA_MAX: float = 0.9
    RETUNE_WINDOW: int = 40        # Samples read for variance
    RETUNE_MIN_SAMPLES: int = 8    # Skip retune below this
    RETUNE_GAIN: float = 0.68      # new_alpha = 0.02 + volatility * gain
    
    # Fusion
    REBOUND_MIN: float = 0.02
    SCORING_PROFILE: str = "master_v1"
    
    # Historical corrector
    HISTORY_WINDOW: int = 120
    
    # Autotune feedback loop
    AUTOTUNE_ENABLED: bool = True
    AUTOTUNE_MIN_CASES: int = 30
    AUTOTUNE_ALPHA_STEP: float = 0.01
    AUTOTUNE_TOP_PATTERNS: int = 30
    AUTOTUNE_UPPER_WR: float = 0.56
    AUTOTUNE_LOWER_WR: float = 0.48
    AUTOTUNE_ALPHA_CEILING: float = 0.3
    AUTOTUNE_TARGET_KEY: str = "master_smk"
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "ODDSFLOW_"


settings = Settings()
