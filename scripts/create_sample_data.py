"""
Create the workshop's sample CSV files.

Usage: python create_sample_data.py [output_dir]
"""
import sys

from envhealth_bayes import create_sample_mortality_data, create_sample_ensemble_data


def main(output_dir: str = 'data'):
    print("=" * 70)
    print(f"Writing sample data to {output_dir}")
    print("=" * 70)
    mortality_path = create_sample_mortality_data(output_dir)
    ensemble_paths = create_sample_ensemble_data(output_dir)

    print("\nFiles:")
    for path in [mortality_path] + list(ensemble_paths.values()):
        print(f"  ✓ {path}")


if __name__ == '__main__':
    main(sys.argv[1] if len(sys.argv) > 1 else 'data')
