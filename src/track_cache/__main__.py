from track_cache.cli import main

main()
