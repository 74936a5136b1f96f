import os

filename = os.environ.get("YIELDTUNE_INPUT_FILE", "field_trials.csv")
INPUT_PATH = os.environ.get("YIELDTUNE_INPUT", f"./data/{filename}")
OUTPUT_PATH = os.environ.get("YIELDTUNE_OUTPUT", "./" + filename.split(".")[0] + "_output")

# File names inside the output folder
REPORT_FILE    = "yieldtune_final_report.md"
ARTIFACTS_FILE = "yieldtune_model_artifacts.pkl"
FIGURES_DIR    = "yieldtune_figures"


def ensure_output_dirs(output_path: str = OUTPUT_PATH) -> str:
    """Creates the output folder and its figures subfolder; returns the figures path."""
    figures = f"{output_path}/{FIGURES_DIR}"
    os.makedirs(figures, exist_ok=True)
    return figures
