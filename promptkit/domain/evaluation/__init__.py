from .output_evaluator import OutputEvaluator, parse_json_output, OUTPUT_FORMAT_CRITERION

__all__ = ["OutputEvaluator", "parse_json_output", "OUTPUT_FORMAT_CRITERION"]
