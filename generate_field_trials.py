import argparse
import os

from yieldtune.dataset import make_synthetic_trials
from yieldtune.paths import INPUT_PATH


ap = argparse.ArgumentParser(description="Write a synthetic field-trial table.")
ap.add_argument("--rows", type=int, default=240)
ap.add_argument("--seed", type=int, default=42)
ap.add_argument("--out", default=INPUT_PATH)
args = ap.parse_args()

df = make_synthetic_trials(n_rows=args.rows, seed=args.seed)

os.makedirs(os.path.dirname(args.out) or ".", exist_ok=True)
if args.out.lower().endswith((".xlsx", ".xls")):
    df.to_excel(args.out, index=False)
else:
    df.to_csv(args.out, index=False)

print(f"✅ Synthetic field trials saved → {args.out} ({len(df)} rows)")
print(df.describe().round(2).T[["mean", "std", "min", "max"]])
