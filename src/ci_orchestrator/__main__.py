from src.ci_orchestrator.cli import main

main()
