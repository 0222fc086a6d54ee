from heyomarchy.cli import main

main()
