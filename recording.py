import logging
import os
import pathlib

from wav_encoder import encode_to_file, DEFAULT_POLICY

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[%(levelname)s] %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
logger.setLevel(logging.INFO)

DIR = pathlib.Path(os.getcwd())
RECORDINGS_DIR = DIR / "recordings"


def _clean_field(value):
    if value is None:
        return ""
    return str(value).strip().replace("/", "-").replace("\\", "-")


def get_rec_file_path(trial_index, task, object_name, affordance, hand_condition, folder=RECORDINGS_DIR):
    """
    trial_<index>_<task>_<object>_<affordance>_<hand>.wav inside folder.
    None or empty fields are left out of the name.
    """
    fields = (trial_index, task, object_name, affordance, hand_condition)
    filename = '_'.join(filter(None, ["trial"] + [_clean_field(f) for f in fields]))
    return pathlib.Path(folder) / (filename + '.wav')


def save_recording(buffer, filepath, policy=DEFAULT_POLICY):
    filepath = encode_to_file(buffer.samples, buffer.channel_count, buffer.sample_rate, filepath, policy=policy)
    logger.info(f"Saved recording: {filepath} ({buffer.duration:.2f} s, {buffer.channel_count} ch)")
    return filepath
