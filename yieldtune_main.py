import argparse
import os
import sys
import traceback

from yieldtune.config import ModelConfig, TuningConfig
from yieldtune.models import available_models
from yieldtune.paths import INPUT_PATH, OUTPUT_PATH


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Tune, select and explain one crop-yield regression model.")
    ap.add_argument("--data", default=INPUT_PATH, help="CSV or Excel file with field-trial observations")
    ap.add_argument("--model", default="random_forest", choices=available_models())
    ap.add_argument("--target", default="yield")
    ap.add_argument("--output", default=OUTPUT_PATH)
    ap.add_argument("--folds", type=int, default=5)
    ap.add_argument("--grid", choices=["latin_hypercube", "grid"], default="latin_hypercube")
    ap.add_argument("--grid-size", type=int, default=20)
    ap.add_argument("--no-racing", action="store_true")
    ap.add_argument("--train-fraction", type=float, default=0.7)
    ap.add_argument("--seed", type=int, default=10000291)
    ap.add_argument("--n-jobs", type=int, default=-1)
    ap.add_argument("--unseen", choices=["error", "bucket"], default="error",
                    help="what to do with categorical levels unseen during fit")
    ap.add_argument("--no-plots", action="store_true")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    if not os.path.exists(args.data):
        print(f"Error: Data file not found at '{args.data}'")
        print("Generate a sample with `python generate_field_trials.py` or pass --data.")
        return 1

    config = ModelConfig(
        target_col=args.target,
        model_name=args.model,
        train_fraction=args.train_fraction,
        random_state=args.seed,
        save_plots=not args.no_plots,
        tuning=TuningConfig(
            cv_folds=args.folds,
            grid_type=args.grid,
            grid_size=args.grid_size,
            racing=not args.no_racing,
            burn_in=min(3, args.folds),
            n_jobs=args.n_jobs,
        ),
    )
    config.recipe.unseen_policy = args.unseen

    from yieldtune.modeller import run_complete_yield_modelling

    try:
        run_complete_yield_modelling(args.data, config, output_path=args.output)
    except Exception as e:
        print(f"❌ Model failed with error: {str(e)}")
        traceback.print_exc()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
