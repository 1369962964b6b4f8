from facebook_ads_importer.main import run

# Add a handler to provide better error messages on common errors
if __name__ == "__main__":
    import sys

    try:
        run()
    except Exception as e:
        if "access token" in str(e).lower():
            print("\nERROR: Facebook rejected the access token.")
            print("Check FB_ACCESS_TOKEN or pass --access-token")
        else:
            print(f"\nERROR: {e}")

        if "--debug" in sys.argv:
            import traceback

            traceback.print_exc()
        sys.exit(1)
