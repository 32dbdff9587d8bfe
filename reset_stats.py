"""
Reset all PaceTime data by deleting the local database.
This removes subjects, sessions, segments and question records.
"""

import os
from BackEnd.core.paths import db_path

def reset_all_stats():
    """Delete the database file to reset all stats."""
    db_file = db_path()

    if db_file.exists():
        print(f"Found database at: {db_file}")

        # Ask for confirmation
        confirm = input("Are you sure you want to delete all study records? This cannot be undone. (yes/no): ")

        if confirm.lower() in ['yes', 'y']:
            try:
                os.remove(db_file)
                print("✓ Database deleted successfully!")
                print("\nNext time you start PaceTime, a fresh database will be created.")
            except OSError as e:
                print(f"✗ Error deleting database: {e}")
        else:
            print("Reset cancelled.")
    else:
        print("No database found. Nothing to reset.")

if __name__ == "__main__":
    print("=" * 50)
    print("PaceTime - Reset All Data")
    print("=" * 50)
    reset_all_stats()
    print("\nPress Enter to exit...")
    input()
